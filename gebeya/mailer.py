import logging

import requests

logger = logging.getLogger(__name__)

BREVO_SEND_URL = "https://api.brevo.com/v3/smtp/email"


class Mailer:
    """Transactional email through Brevo; without an API key messages are only logged."""

    def __init__(self, settings):
        self.api_key = settings.brevo_api_key
        self.sender = settings.email_sender
        self.timeout = settings.http_timeout_seconds

    def send(self, to_email: str, subject: str, text: str, html: str = None):
        if not self.api_key:
            logger.info("EMAIL to=%s subject=%r\n%s", to_email, subject, text)
            return
        payload = {
            "sender": {"email": self.sender, "name": "Gebeya"},
            "to": [{"email": to_email}],
            "subject": subject,
            "textContent": text,
            "htmlContent": html or f"<p>{text}</p>",
        }
        resp = requests.post(
            BREVO_SEND_URL,
            json=payload,
            headers={"api-key": self.api_key, "accept": "application/json"},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        logger.info("Email %r sent to %s", subject, to_email)

    def send_otp(self, to_email: str, code: str, ttl_minutes: int):
        self.send(
            to_email,
            "Your OTP Code",
            f"Your OTP code is: {code}. It expires in {ttl_minutes} minutes.",
            f"<p>Your OTP code is: <b>{code}</b>. It expires in {ttl_minutes} minutes.</p>",
        )
