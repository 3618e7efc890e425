import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..auth import require_admin
from ..database import get_db
from ..models import User
from ..services.access_codes import CodeGenerationError, invalidate_code, issue_replacement_code

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/access-codes", tags=["Access Codes"])


class AutoReplaceRequest(BaseModel):
    usedCodeId: str = Field(min_length=1)


@router.post("/auto-replace")
async def auto_replace(
    data: AutoReplaceRequest,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Retire a used code and issue a fresh one for the same community"""
    used = invalidate_code(db, data.usedCodeId)
    if used is None:
        raise HTTPException(status_code=404, detail="Access code not found")
    if used.community_id != current_user.community_id:
        db.rollback()
        raise HTTPException(status_code=403, detail="Access denied for this community")

    try:
        new_code = issue_replacement_code(
            db, used.community_id, current_user.email, "Auto-generated replacement for used code"
        )
        db.commit()
    except CodeGenerationError as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=str(e)) from e

    logger.info(f"🔁 Replaced access code {used.code} with {new_code}")
    return {
        "success": True,
        "newCode": new_code,
        "message": "Used code invalidated and new code generated successfully",
    }
