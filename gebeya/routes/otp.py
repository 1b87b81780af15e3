import logging
import secrets
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from ..context import AppContext, get_context
from ..database import as_utc, create_document, utcnow
from ..schemas import OTP as OTPSchema
from . import RequestModel

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/otp", tags=["otp"])


class OTPRequest(RequestModel):
    email: Optional[str] = None


class OTPVerify(RequestModel):
    email: Optional[str] = None
    otp: Optional[str] = None


def generate_otp() -> str:
    return str(100000 + secrets.randbelow(900000))


@router.post("/send")
def send_otp(payload: OTPRequest, context: AppContext = Depends(get_context)):
    if not payload.email:
        raise HTTPException(status_code=400, detail="Email is required")
    db = context.db
    user = db["user"].find_one({"email": payload.email.strip().lower()})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    ttl = context.settings.otp_ttl_minutes
    code = generate_otp()
    create_document(db, "otp", OTPSchema(user_id=str(user["_id"]), code=code, expires_at=utcnow() + timedelta(minutes=ttl)))
    context.mailer.send_otp(user["email"], code, ttl)
    return {"message": "OTP sent successfully"}


@router.post("/verify")
def verify_otp(payload: OTPVerify, context: AppContext = Depends(get_context)):
    if not payload.email or not payload.otp:
        raise HTTPException(status_code=400, detail="Email and OTP are required")
    db = context.db
    user = db["user"].find_one({"email": payload.email.strip().lower()})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    user_id = str(user["_id"])
    record = db["otp"].find_one({"user_id": user_id, "code": payload.otp.strip()})
    if not record:
        raise HTTPException(status_code=400, detail="Invalid OTP")
    if as_utc(record["expires_at"]) < utcnow():
        raise HTTPException(status_code=400, detail="OTP expired")

    db["otp"].delete_many({"user_id": user_id})
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"is_verified": True, "updated_at": utcnow()}})
    logger.info("OTP verified for %s", user["email"])
    return {"message": "OTP verified successfully"}
