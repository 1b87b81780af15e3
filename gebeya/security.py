import logging
from datetime import timedelta
from typing import Optional
from urllib.parse import unquote

import bcrypt
import jwt
from bson.objectid import ObjectId
from bson.errors import InvalidId
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import ValidationError
from pymongo.errors import DuplicateKeyError

from .context import AppContext, get_context
from .database import as_utc, serialize_doc, utcnow
from .schemas import Session as SessionSchema, User as UserSchema

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

WITHOUT_PASSWORD = {"password_hash": 0}


# ----------------------- Passwords & tokens -----------------------
def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode()[:72], bcrypt.gensalt(rounds=10)).decode()


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    return bcrypt.checkpw(password.encode()[:72], password_hash.encode())


def create_token(payload: dict, settings) -> str:
    exp = utcnow() + timedelta(hours=settings.jwt_expires_hours)
    to_encode = {**payload, "exp": exp}
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str, settings) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


# ----------------------- Identity providers -----------------------
class SessionCookieProvider:
    """Identity from a session cookie issued by the social-login integration."""

    def resolve(self, request: Request, credentials, context: AppContext):
        raw = request.cookies.get(context.settings.session_cookie_name)
        if not raw:
            return None
        # signed cookies look like "<token>.<signature>"
        token = unquote(raw).split(".", 1)[0]
        db = context.db
        record = db["session"].find_one({"token": token})
        if not record:
            return None
        try:
            session = SessionSchema.model_validate(record)
        except ValidationError as e:
            logger.warning("Ignoring malformed session %s: %s", record["_id"], e)
            return None
        if as_utc(session.expires_at) < utcnow():
            return None
        return self._local_user(db, session)

    @staticmethod
    def _local_user(db, session: SessionSchema):
        auth_id = session.auth_id
        user = db["user"].find_one({"auth_id": auth_id}, WITHOUT_PASSWORD)
        if user:
            return user
        email = session.email.lower()
        user = db["user"].find_one({"email": email}, WITHOUT_PASSWORD)
        if user:
            db["user"].update_one({"_id": user["_id"]}, {"$set": {"auth_id": auth_id, "updated_at": utcnow()}})
            user["auth_id"] = auth_id
            return user
        profile = UserSchema(
            name=session.name or email.split("@")[0],
            email=email,
            image=session.image or "",
            auth_id=auth_id,
            is_verified=True,
        )
        doc = profile.to_document()
        now = utcnow()
        doc.update(created_at=now, updated_at=now)
        try:
            doc["_id"] = db["user"].insert_one(doc).inserted_id
        except DuplicateKeyError:
            # a concurrent first sign-in got there first
            return db["user"].find_one({"auth_id": auth_id}, WITHOUT_PASSWORD)
        logger.info("Created user %s on first sign-in", email)
        return doc


class BearerTokenProvider:
    """Identity from an `Authorization: Bearer <jwt>` header."""

    def resolve(self, request: Request, credentials: Optional[HTTPAuthorizationCredentials], context: AppContext):
        if credentials is None or not credentials.credentials:
            return None
        payload = decode_token(credentials.credentials, context.settings)
        user_id = payload.get("id")
        if not user_id:
            raise HTTPException(status_code=401, detail="Invalid token payload")
        try:
            oid = ObjectId(str(user_id))
        except InvalidId:
            raise HTTPException(status_code=401, detail="Invalid token payload")
        user = context.db["user"].find_one({"_id": oid}, WITHOUT_PASSWORD)
        if not user:
            raise HTTPException(status_code=401, detail="User not found")
        return user


IDENTITY_PROVIDERS = (SessionCookieProvider(), BearerTokenProvider())


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    context: AppContext = Depends(get_context),
):
    for provider in IDENTITY_PROVIDERS:
        user = provider.resolve(request, credentials, context)
        if user is not None:
            break
    else:
        raise HTTPException(status_code=401, detail="Unauthorized")
    if user.get("is_banned"):
        raise HTTPException(status_code=403, detail="Account is banned")
    return serialize_doc(user)


def require_admin(user=Depends(get_current_user)):
    if user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Admin only")
    return user
