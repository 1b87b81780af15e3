import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import EmailStr, Field
from pymongo.database import Database

from ..context import get_db, get_settings
from ..database import create_document, parse_object_id, serialize_doc, utcnow
from ..schemas import User as UserSchema
from ..security import create_token, hash_password, verify_password
from . import RequestModel

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/email-auth", tags=["auth"])


class SignupBody(RequestModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    password: Optional[str] = None
    age: Optional[int] = Field(None, ge=0, le=120)


class LoginBody(RequestModel):
    email: Optional[EmailStr] = None
    password: Optional[str] = None


@router.post("/register")
def register(body: SignupBody, db: Database = Depends(get_db)):
    if not body.name or not body.email or not body.password:
        raise HTTPException(status_code=400, detail="All fields are required")
    email = body.email.lower()
    if db["user"].find_one({"email": email}):
        raise HTTPException(status_code=400, detail="User already registered with the given email")
    user = UserSchema(name=body.name, email=email, age=body.age, password_hash=hash_password(body.password))
    user_id = create_document(db, "user", user.to_document())
    logger.info("Registered user %s", email)
    return {"message": "User registered successfully", "user": serialize_doc(db["user"].find_one({"_id": parse_object_id(user_id)}))}


@router.post("/login")
def login(body: LoginBody, db: Database = Depends(get_db), settings=Depends(get_settings)):
    if not body.email or not body.password:
        raise HTTPException(status_code=400, detail="All fields are required")
    user = db["user"].find_one({"email": body.email.lower()})
    if not user:
        raise HTTPException(status_code=404, detail="No user found with the provided email")
    if not verify_password(body.password, user.get("password_hash")):
        logger.warning("Invalid password for %s", body.email)
        raise HTTPException(status_code=403, detail="Invalid password")
    if user.get("is_banned"):
        raise HTTPException(status_code=403, detail="Account is banned")

    db["user"].update_one({"_id": user["_id"]}, {"$set": {"last_login": utcnow()}})
    payload = {"id": str(user["_id"]), "name": user["name"], "email": user["email"], "role": user.get("role", "user")}
    token = create_token(payload, settings)
    return {"message": "User logged successfully", "user": payload, "token": token}
