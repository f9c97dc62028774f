import logging
from typing import Annotated, Optional

import httpx
from fastapi import Depends

from .config import Settings, get_settings

logger = logging.getLogger(__name__)

RESEND_EMAILS_URL = "https://api.resend.com/emails"


class MailerError(RuntimeError):
    pass


def reset_password_email(reset_url: str) -> str:
    return f"""
        <h1>Reset Your Password</h1>
        <p>Click the link below to reset your password. This link will expire in 1 hour.</p>
        <a href="{reset_url}">Reset Password</a>
        <p>If you didn't request this, please ignore this email.</p>
    """


class Mailer:
    def __init__(self, api_key: Optional[str], sender: str):
        self.api_key = api_key
        self.sender = sender

    def send(self, to: str, subject: str, html: str) -> None:
        if not self.api_key:
            logger.warning("RESEND_API_KEY not set, skipping email %r to %s", subject, to)
            return
        try:
            response = httpx.post(
                RESEND_EMAILS_URL,
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={"from": self.sender, "to": [to], "subject": subject, "html": html},
                timeout=10.0,
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise MailerError(f"Could not send email: {e}") from e


def get_mailer(settings: Annotated[Settings, Depends(get_settings)]) -> Mailer:
    return Mailer(settings.resend_api_key, settings.mail_from)
