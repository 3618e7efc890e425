"""
Sweep endpoints hit by the external scheduler (Vercel cron, cloud scheduler, ...)
"""

import logging
import secrets

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from ..config import CRON_SECRET
from ..database import get_db
from ..email_service import get_mailer
from ..services.booking_sweeps import ReminderWindow, expire_waitlist, run_auto_cancel, send_booking_reminders

logger = logging.getLogger(__name__)


def verify_cron_secret(request: Request) -> None:
    """Open when CRON_SECRET is unset; otherwise Bearer token or X-Cron-Secret must match"""
    if not CRON_SECRET:
        return
    supplied = request.headers.get("x-cron-secret")
    auth_header = request.headers.get("authorization", "")
    if not supplied and auth_header.lower().startswith("bearer "):
        supplied = auth_header[7:].strip()
    if not supplied or not secrets.compare_digest(supplied, CRON_SECRET):
        logger.warning(f"🚫 Rejected cron call to {request.url.path} from {request.client.host if request.client else 'unknown'}")
        raise HTTPException(status_code=401, detail="Unauthorized")


def get_reminder_window() -> ReminderWindow:
    return ReminderWindow()


router = APIRouter(tags=["Cron"], dependencies=[Depends(verify_cron_secret)])


@router.api_route("/cron/expire-waitlist", methods=["GET", "POST"])
async def expire_waitlist_endpoint(db: Session = Depends(get_db)):
    return await expire_waitlist(db)


@router.get("/cron/booking-reminders")
async def booking_reminders_endpoint(
    db: Session = Depends(get_db),
    mailer=Depends(get_mailer),
    window: ReminderWindow = Depends(get_reminder_window),
):
    return await send_booking_reminders(db, mailer, window=window)


@router.api_route("/cron/send-reminders", methods=["GET", "POST"])
async def send_reminders_endpoint(
    db: Session = Depends(get_db),
    mailer=Depends(get_mailer),
    window: ReminderWindow = Depends(get_reminder_window),
):
    return await send_booking_reminders(db, mailer, window=window)


@router.post("/check-reminders")
async def check_reminders_endpoint(
    db: Session = Depends(get_db),
    mailer=Depends(get_mailer),
    window: ReminderWindow = Depends(get_reminder_window),
):
    return await send_booking_reminders(db, mailer, window=window)


@router.api_route("/cron/auto-cancel", methods=["GET", "POST"])
async def auto_cancel_endpoint(db: Session = Depends(get_db), mailer=Depends(get_mailer)):
    return await run_auto_cancel(db, mailer)
