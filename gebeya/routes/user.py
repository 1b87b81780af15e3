import logging
import re
from typing import Optional

import requests
from fastapi import APIRouter, Depends, HTTPException
from pydantic import Field

from ..context import AppContext, get_context
from ..database import parse_object_id, serialize_doc, utcnow
from ..schemas import PHONE_PATTERN
from ..security import WITHOUT_PASSWORD, get_current_user
from . import RequestModel

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/user", tags=["user"])


class ProfileUpdateBody(RequestModel):
    name: Optional[str] = Field(None, max_length=100)
    image: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None
    bio: Optional[str] = Field(None, max_length=500)


@router.get("/me")
def get_me(user=Depends(get_current_user)):
    return {"success": True, "user": user}


@router.put("/update")
def update_profile(body: ProfileUpdateBody, user=Depends(get_current_user), context: AppContext = Depends(get_context)):
    # empty strings are treated as "not provided"
    update = {k: v.strip() for k, v in body.model_dump().items() if v and v.strip()}
    if "name" in update and len(update["name"]) < 2:
        raise HTTPException(status_code=400, detail="Name must be at least 2 characters")
    if "phone" in update:
        if not re.match(PHONE_PATTERN, update["phone"]):
            raise HTTPException(status_code=400, detail="Invalid phone number")
    update["updated_at"] = utcnow()

    db = context.db
    res = db["user"].update_one({"_id": parse_object_id(user["id"], "user")}, {"$set": update})
    if res.matched_count == 0:
        raise HTTPException(status_code=404, detail="User not found")
    updated = db["user"].find_one({"_id": parse_object_id(user["id"], "user")}, WITHOUT_PASSWORD)
    return {"success": True, "user": serialize_doc(updated)}


@router.get("/refresh")
def refresh_profile(user=Depends(get_current_user), context: AppContext = Depends(get_context)):
    """Re-pull name, email and avatar from the linked Google account."""
    db = context.db
    account = None
    if user.get("auth_id"):
        account = db["account"].find_one({"auth_id": user["auth_id"], "provider_id": "google"})
    if not account:
        raise HTTPException(status_code=404, detail="No linked Google account")
    access_token = account.get("access_token")
    if not access_token:
        raise HTTPException(status_code=400, detail="No Google access token available")

    try:
        resp = requests.get(
            context.settings.google_userinfo_url,
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=context.settings.http_timeout_seconds,
        )
        resp.raise_for_status()
    except requests.RequestException as e:
        logger.error("Google userinfo request failed: %s", e)
        raise HTTPException(status_code=502, detail="Failed to fetch Google user info")
    profile = resp.json()

    update = {"updated_at": utcnow()}
    if profile.get("name"):
        update["name"] = profile["name"]
    if profile.get("email"):
        update["email"] = profile["email"].lower()
    if profile.get("picture"):
        update["image"] = profile["picture"]
    oid = parse_object_id(user["id"], "user")
    db["user"].update_one({"_id": oid}, {"$set": update})
    return {"success": True, "user": serialize_doc(db["user"].find_one({"_id": oid}, WITHOUT_PASSWORD))}
