import logging
import math
import re
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from pydantic import EmailStr, Field
from pymongo import ReturnDocument
from pymongo.database import Database

from ..context import AppContext, get_context, get_db
from ..database import create_document, parse_object_id, serialize_doc, utcnow
from ..schemas import ROLES, User as UserSchema
from ..security import WITHOUT_PASSWORD, hash_password, require_admin
from . import RequestModel

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


class AdminRegisterBody(RequestModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    password: Optional[str] = None


class AddUserBody(AdminRegisterBody):
    role: str = "user"
    phone: Optional[str] = None
    location: Optional[str] = None
    age: Optional[int] = Field(None, ge=0, le=120)


class BanBody(RequestModel):
    ban: bool


def _create_user(db: Database, body: AdminRegisterBody, role: str, **extra) -> dict:
    if not body.name or not body.email or not body.password:
        raise HTTPException(status_code=400, detail="All fields are required")
    email = body.email.lower()
    if db["user"].find_one({"email": email}, {"_id": 1}):
        raise HTTPException(status_code=400, detail="User already registered with the given email")
    user = UserSchema(
        name=body.name,
        email=email,
        password_hash=hash_password(body.password),
        role=role,
        is_verified=True,
        **{k: v for k, v in extra.items() if v is not None},
    )
    user_id = create_document(db, "user", user.to_document())
    logger.info("Created %s account %s", role, email)
    return serialize_doc(db["user"].find_one({"_id": parse_object_id(user_id, "user")}, WITHOUT_PASSWORD))


@router.post("/register")
def register_admin(
    body: AdminRegisterBody,
    registration_key: Optional[str] = Header(None, alias="X-Admin-Registration-Key"),
    context: AppContext = Depends(get_context),
):
    expected = context.settings.admin_registration_key
    if expected and registration_key != expected:
        raise HTTPException(status_code=403, detail="Invalid admin registration key")
    admin = _create_user(context.db, body, "admin")
    return {"message": "Admin registered successfully.", "admin": admin}


@router.post("/add-users")
def add_users(body: AddUserBody, admin=Depends(require_admin), db: Database = Depends(get_db)):
    if body.role not in ("user", "moderator"):
        raise HTTPException(status_code=400, detail="Role must be user or moderator")
    user = _create_user(db, body, body.role, phone=body.phone, location=body.location, age=body.age)
    return {"message": f"{body.role.capitalize()} added successfully", "user": user}


@router.get("")
def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = None,
    role: Optional[str] = None,
    admin=Depends(require_admin),
    db: Database = Depends(get_db),
):
    filt = {}
    if search:
        pattern = re.escape(search)
        filt["$or"] = [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"email": {"$regex": pattern, "$options": "i"}},
        ]
    if role:
        if role not in ROLES:
            raise HTTPException(status_code=400, detail="Invalid role")
        filt["role"] = role
    total = db["user"].count_documents(filt)
    users = db["user"].find(filt, WITHOUT_PASSWORD).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
    return {
        "message": "Users fetched successfully",
        "page": page,
        "totalPages": math.ceil(total / limit),
        "totalUsers": total,
        "users": [serialize_doc(u) for u in users],
    }


@router.get("/{user_id}")
def get_user(user_id: str, admin=Depends(require_admin), db: Database = Depends(get_db)):
    user = db["user"].find_one({"_id": parse_object_id(user_id, "user")}, WITHOUT_PASSWORD)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return {"message": "User fetched successfully", "user": serialize_doc(user)}


@router.delete("/{user_id}")
def delete_user(user_id: str, admin=Depends(require_admin), db: Database = Depends(get_db)):
    res = db["user"].delete_one({"_id": parse_object_id(user_id, "user")})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="User not found")
    logger.info("Admin %s deleted user %s", admin["id"], user_id)
    return {"message": "User deleted successfully"}


@router.patch("/ban/{user_id}")
def ban_user(user_id: str, body: BanBody, admin=Depends(require_admin), db: Database = Depends(get_db)):
    if user_id == admin["id"]:
        raise HTTPException(status_code=400, detail="You cannot ban yourself")
    user = db["user"].find_one_and_update(
        {"_id": parse_object_id(user_id, "user")},
        {"$set": {"is_banned": body.ban, "updated_at": utcnow()}},
        projection={"name": 1, "email": 1, "is_banned": 1},
        return_document=ReturnDocument.AFTER,
    )
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    logger.info("Admin %s set is_banned=%s for user %s", admin["id"], body.ban, user_id)
    return {"message": "User banned" if body.ban else "User unbanned", "user": serialize_doc(user)}
