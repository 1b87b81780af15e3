import logging
import os
import sys
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel


class Settings(BaseModel):
    database_url: str = "mongodb://localhost:27017"
    database_name: str = "gebeya-go"
    jwt_secret: str = "devsecret"
    jwt_algorithm: str = "HS256"
    jwt_expires_hours: int = 24
    client_origin: str = "http://localhost:5173"
    session_cookie_name: str = "better-auth.session_token"
    upload_dir: str = "uploads"
    public_url: str = "http://localhost:8000"
    brevo_api_key: Optional[str] = None
    email_sender: str = "no-reply@gebeya.local"
    otp_ttl_minutes: int = 5
    admin_registration_key: Optional[str] = None
    db_retry_seconds: float = 5
    google_userinfo_url: str = "https://www.googleapis.com/oauth2/v3/userinfo"
    http_timeout_seconds: float = 10
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        return cls(
            database_url=os.getenv("DATABASE_URL", cls.model_fields["database_url"].default),
            database_name=os.getenv("DATABASE_NAME", cls.model_fields["database_name"].default),
            jwt_secret=os.getenv("JWT_SECRET", "devsecret"),
            jwt_expires_hours=int(os.getenv("JWT_EXPIRES_HOURS", 24)),
            client_origin=os.getenv("CLIENT_ORIGIN", cls.model_fields["client_origin"].default),
            session_cookie_name=os.getenv("SESSION_COOKIE_NAME", cls.model_fields["session_cookie_name"].default),
            upload_dir=os.getenv("UPLOAD_DIR", "uploads"),
            public_url=os.getenv("PUBLIC_URL", cls.model_fields["public_url"].default).rstrip("/"),
            brevo_api_key=os.getenv("BREVO_API_KEY") or None,
            email_sender=os.getenv("EMAIL_SENDER", cls.model_fields["email_sender"].default),
            otp_ttl_minutes=int(os.getenv("OTP_TTL_MINUTES", 5)),
            admin_registration_key=os.getenv("ADMIN_REGISTRATION_KEY") or None,
            db_retry_seconds=float(os.getenv("DB_RETRY_SECONDS", 5)),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


def configure_logging(level: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stdout,
    )
