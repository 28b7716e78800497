"""Auth email delivery

Verification and password-reset links are handed to an ``AuthMailer``. The
default ``LoggingAuthMailer`` only logs them, which is what development and
self-hosted installs without SMTP use.
"""

import logging
from abc import ABC, abstractmethod
from urllib.parse import urlencode

logger = logging.getLogger(__name__)


class AuthMailer(ABC):
    """Outgoing auth email contract"""

    @abstractmethod
    async def send_verification_email(self, email: str, display_name: str, token: str) -> None:
        ...

    @abstractmethod
    async def send_password_reset_email(self, email: str, display_name: str, token: str) -> None:
        ...

    @abstractmethod
    async def send_welcome_email(self, email: str, display_name: str) -> None:
        ...


class LoggingAuthMailer(AuthMailer):
    """Mailer that logs links instead of sending them"""

    def __init__(
        self,
        frontend_url: str,
        verify_email_path: str = "/auth/verify-email",
        reset_password_path: str = "/auth/reset-password",
    ):
        self.frontend_url = frontend_url.rstrip("/")
        self.verify_email_path = verify_email_path
        self.reset_password_path = reset_password_path

    def build_link(self, path: str, token: str) -> str:
        return f"{self.frontend_url}{path}?{urlencode({'token': token})}"

    async def send_verification_email(self, email: str, display_name: str, token: str) -> None:
        logger.info(f"Verification email queued for {email}")
        logger.debug(f"Verification link: {self.build_link(self.verify_email_path, token)}")

    async def send_password_reset_email(self, email: str, display_name: str, token: str) -> None:
        logger.info(f"Password reset email queued for {email}")
        logger.debug(f"Password reset link: {self.build_link(self.reset_password_path, token)}")

    async def send_welcome_email(self, email: str, display_name: str) -> None:
        logger.info(f"Welcome email queued for {email}")
