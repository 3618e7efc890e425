import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from firebase_admin import exceptions as firebase_exceptions

from ..auth import get_current_user
from ..config import FIREBASE_CREDENTIALS_PATH, FIREBASE_PROJECT_ID
from ..firebase import FirebaseClient
from ..models import User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])


def get_firebase_client(request: Request) -> FirebaseClient:
    client = getattr(request.app.state, "firebase_client", None)
    if client is None:
        client = FirebaseClient(FIREBASE_PROJECT_ID, FIREBASE_CREDENTIALS_PATH)
        request.app.state.firebase_client = client
    return client


@router.post("/firebase-token")
async def create_firebase_token(
    current_user: User = Depends(get_current_user),
    firebase: FirebaseClient = Depends(get_firebase_client),
):
    """Mint a custom token so the client SDK can act with the user's role and community"""
    claims = {
        "email": current_user.email,
        "name": current_user.name,
        "role": current_user.role,
        "communityId": current_user.community_id,
    }
    try:
        token = firebase.create_custom_token(current_user.email, claims)
    except (firebase_exceptions.FirebaseError, ValueError) as e:
        logger.error(f"❌ Failed to mint Firebase token for {current_user.email}: {e}")
        raise HTTPException(status_code=500, detail="Failed to create Firebase token") from e
    return {"success": True, "token": token}
