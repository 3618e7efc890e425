import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from ..auth import get_current_user, get_token_claims, require_admin
from ..database import get_db
from ..domain.bookings.service import BookingService
from ..email_service import get_mailer
from ..models import ADMIN, RESIDENT, SUPER_ADMIN, AccessCode, Community, Invite, User
from ..services.access_codes import (
    AccessCodeError,
    invalidate_code,
    issue_replacement_code,
    redeem_access_code,
)
from ..shared.timeutils import isoformat, utcnow
from ..shared.validators import normalize_email, validate_flat_number

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Users"])


class CreateUserRequest(BaseModel):
    name: Optional[str] = None
    accessCode: Optional[str] = None
    flatNumber: Optional[str] = None

    @field_validator("flatNumber")
    @classmethod
    def validate_flat(cls, v):
        if v:
            return validate_flat_number(v)
        return v


class DeleteUserRequest(BaseModel):
    email: str
    reason: Optional[str] = None

    @field_validator("email")
    @classmethod
    def validate_email_field(cls, v: str) -> str:
        return normalize_email(v)


class RestoreUserRequest(BaseModel):
    email: str

    @field_validator("email")
    @classmethod
    def validate_email_field(cls, v: str) -> str:
        return normalize_email(v)


class AssignRoleRequest(BaseModel):
    email: str
    communityId: Optional[str] = None
    role: str = ADMIN

    @field_validator("email")
    @classmethod
    def validate_email_field(cls, v: str) -> str:
        return normalize_email(v)

    @field_validator("role")
    @classmethod
    def validate_role(cls, v: str) -> str:
        if v not in (RESIDENT, ADMIN, SUPER_ADMIN):
            raise ValueError("Role must be resident, admin or super_admin")
        return v


class UpdateFlatNumberRequest(BaseModel):
    flatNumber: str

    @field_validator("flatNumber")
    @classmethod
    def validate_flat(cls, v):
        return validate_flat_number(v)


def user_to_dict(user: User) -> dict:
    return {
        "email": user.email,
        "name": user.name,
        "role": user.role,
        "communityId": user.community_id,
        "flatNumber": user.flat_number,
        "profileCompleted": user.profile_completed,
        "status": user.status,
        "deleted": user.deleted,
        "lastLogin": isoformat(user.last_login),
        "createdAt": isoformat(user.created_at),
    }


def _redeem_or_400(db: Session, code: str, email: str, now) -> AccessCode:
    try:
        return redeem_access_code(db, code, email, now=now)
    except AccessCodeError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e)) from e


@router.post("/create-user")
async def create_user(
    data: CreateUserRequest,
    claims: dict = Depends(get_token_claims),
    db: Session = Depends(get_db),
):
    """
    Called after sign-in. Existing users get their last login refreshed; new
    users join a community through a pending invite or an access code, and a
    deactivated user comes back by redeeming a fresh code.
    """
    email = claims["email"]
    now = utcnow()
    user = db.query(User).filter(User.email == email).first()

    if user and not user.deleted:
        user.last_login = now
        if data.name and not user.name:
            user.name = data.name
        if not user.community_id and data.accessCode:
            access_code = _redeem_or_400(db, data.accessCode, email, now)
            user.community_id = access_code.community_id
            user.access_code_used = access_code.code
            logger.info(f"🏘️ Backfilled community {access_code.community_id} for {email}")
        db.commit()
        return {
            "success": True,
            "message": "User login updated",
            "communityId": user.community_id,
            "role": user.role,
        }

    if user and user.deleted:
        if not data.accessCode:
            raise HTTPException(
                status_code=403,
                detail="Your account has been deactivated. Ask your admin for a new access code.",
            )
        access_code = _redeem_or_400(db, data.accessCode, email, now)
        user.deleted = False
        user.status = "active"
        user.deleted_at = None
        user.restored_at = now
        user.restored_by = email
        user.role = RESIDENT
        user.community_id = access_code.community_id
        user.access_code_used = access_code.code
        user.last_login = now
        if data.flatNumber:
            user.flat_number = data.flatNumber
        db.commit()
        logger.info(f"♻️ Restored deactivated user {email} with a new access code")
        return {
            "success": True,
            "message": "Account restored",
            "communityId": user.community_id,
            "role": user.role,
        }

    invite = (
        db.query(Invite)
        .filter(Invite.email == email, Invite.status == "pending")
        .order_by(Invite.created_at.desc())
        .first()
    )
    access_code = None
    if invite:
        role, community_id = invite.role, invite.community_id
        invite.status = "accepted"
        invite.accepted_at = now
        logger.info(f"✉️ Accepting invite for {email} as {role}")
    elif data.accessCode:
        access_code = _redeem_or_400(db, data.accessCode, email, now)
        role, community_id = RESIDENT, access_code.community_id
    else:
        raise HTTPException(
            status_code=400,
            detail="Unable to determine community assignment. Please contact your administrator.",
        )

    user = User(
        email=email,
        name=data.name or claims.get("name") or email.split("@")[0],
        role=role,
        community_id=community_id,
        flat_number=data.flatNumber,
        profile_completed=bool(data.flatNumber),
        access_code_used=access_code.code if access_code else None,
        last_login=now,
        created_at=now,
    )
    db.add(user)
    db.commit()
    logger.info(f"🆕 Created user {email} in community {community_id}")
    return {
        "success": True,
        "message": "User created successfully",
        "communityId": community_id,
        "role": role,
    }


@router.post("/delete-user")
async def delete_user(
    data: DeleteUserRequest,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
    mailer=Depends(get_mailer),
):
    """
    Soft-delete a resident, retire their access code and issue a replacement.
    Their open bookings are cancelled so the seats go to the waitlist.
    """
    target = db.query(User).filter(User.email == data.email).first()
    if not target:
        raise HTTPException(status_code=404, detail="User not found")
    if target.email == current_user.email:
        raise HTTPException(status_code=400, detail="You cannot delete your own account")
    if target.community_id != current_user.community_id:
        raise HTTPException(status_code=403, detail="Access denied for this community")
    if target.deleted:
        raise HTTPException(status_code=400, detail="User is already deleted")

    now = utcnow()
    target.deleted = True
    target.status = "deleted"
    target.deleted_at = now
    target.deleted_by = current_user.email
    target.deletion_reason = data.reason

    deleted_code = None
    if target.access_code_used and invalidate_code(db, target.access_code_used, now=now):
        deleted_code = target.access_code_used
    for code in db.query(AccessCode).filter(AccessCode.used_by == target.email, AccessCode.invalidated.is_(False)):
        code.invalidated = True
        code.invalidated_at = now
        deleted_code = deleted_code or code.code

    new_code = None
    if target.community_id:
        new_code = issue_replacement_code(
            db, target.community_id, current_user.email, f"Replacement for deleted resident {target.email}"
        )

    service = BookingService(db, mailer)
    cancelled, promoted = service.release_user_bookings(target.email, current_user.email, now=now)

    db.commit()
    logger.info(f"🗑️ User {target.email} soft-deleted by {current_user.email}, {len(cancelled)} booking(s) cancelled")
    await service.notify_promoted(promoted)
    return {
        "success": True,
        "message": "User deleted and access code replaced",
        "deletedAccessCode": deleted_code,
        "newAccessCode": new_code,
        "cancelledBookings": len(cancelled),
        "promotedBookingIds": [b.id for b in promoted],
    }


@router.post("/restore-user")
async def restore_user(
    data: RestoreUserRequest,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    target = db.query(User).filter(User.email == data.email).first()
    if not target:
        raise HTTPException(status_code=404, detail="User not found")
    if target.community_id != current_user.community_id:
        raise HTTPException(status_code=403, detail="Access denied for this community")
    if not target.deleted:
        raise HTTPException(status_code=400, detail="User is not deleted")

    target.deleted = False
    target.status = "active"
    target.deleted_at = None
    target.restored_at = utcnow()
    target.restored_by = current_user.email
    db.commit()
    logger.info(f"♻️ User {target.email} restored by {current_user.email}")
    return {"success": True, "message": "User restored successfully", "user": user_to_dict(target)}


@router.post("/update-flat-number")
async def update_flat_number(
    data: UpdateFlatNumberRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    current_user.flat_number = data.flatNumber
    current_user.profile_completed = True
    db.commit()
    return {"success": True, "flatNumber": current_user.flat_number}


@router.get("/auth-status")
async def auth_status(
    claims: dict = Depends(get_token_claims),
    db: Session = Depends(get_db),
):
    user = db.query(User).filter(User.email == claims["email"]).first()
    return {
        "authenticated": True,
        "email": claims["email"],
        "registered": bool(user and not user.deleted),
        "user": user_to_dict(user) if user else None,
    }


@router.post("/assign-admin")
async def assign_admin(
    data: AssignRoleRequest,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """
    Grant a role to an email, creating the user when needed. Admins manage
    their own community; only a super admin may target another community or
    hand out super_admin.
    """
    community_id = data.communityId or current_user.community_id
    if current_user.role != SUPER_ADMIN:
        if community_id != current_user.community_id:
            raise HTTPException(status_code=403, detail="Access denied for this community")
        if data.role == SUPER_ADMIN:
            raise HTTPException(status_code=403, detail="Only a super admin can grant super_admin")
    if data.email == current_user.email:
        raise HTTPException(status_code=400, detail="You cannot change your own role")
    if not db.query(Community).filter(Community.id == community_id).first():
        raise HTTPException(status_code=404, detail="Community not found")

    now = utcnow()
    user = db.query(User).filter(User.email == data.email).first()
    if user is None:
        user = User(
            email=data.email,
            name=data.email.split("@")[0],
            created_at=now,
        )
        db.add(user)
    user.role = data.role
    user.community_id = community_id
    user.profile_completed = True
    user.deleted = False
    user.status = "active"

    db.add(
        Invite(
            email=data.email,
            community_id=community_id,
            role=data.role,
            status="accepted",
            accepted_at=now,
        )
    )
    db.commit()
    logger.info(f"👑 {current_user.email} assigned role {data.role} in {community_id} to {data.email}")
    return {
        "success": True,
        "message": "Role assigned successfully. The user must sign in again to pick it up.",
        "user": user_to_dict(user),
    }
