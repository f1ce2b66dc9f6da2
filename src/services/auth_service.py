"""One-time-code sign-in business logic."""

import logging
from typing import Any

from src.api.middleware.error_handler import ValidationError
from src.core.supabase import create_auth_client

logger = logging.getLogger(__name__)


class AuthService:
    """Service for passwordless email sign-in."""

    def __init__(self) -> None:
        """Initialize auth service with isolated Supabase client.

        Uses create_auth_client() instead of get_supabase_client() so the
        session created by verify_otp() never lands on the shared client.
        """
        self.client = create_auth_client()

    async def send_one_time_code(self, email: str) -> dict[str, Any]:
        """Email a one-time sign-in code, creating the account if needed.

        Args:
            email: User's email address.

        Returns:
            dict: email_sent status and message.

        Raises:
            ValidationError: If the code could not be sent.
        """
        address = email.strip().lower()
        try:
            self.client.auth.sign_in_with_otp(
                {
                    "email": address,
                    "options": {"should_create_user": True},
                }
            )
        except Exception as e:
            error_msg = str(e)
            logger.error("Sending one-time code failed: %s", error_msg)

            if "invalid" in error_msg.lower() and "email" in error_msg.lower():
                raise ValidationError("Invalid email address") from e
            if "rate limit" in error_msg.lower() or "too many" in error_msg.lower():
                raise ValidationError("Too many requests. Wait a minute and try again.") from e

            raise ValidationError(f"Could not send code: {error_msg}") from e

        logger.info("One-time code sent")
        return {
            "email_sent": True,
            "message": "Check your email for the sign-in code.",
        }

    async def verify_one_time_code(self, email: str, code: str) -> dict[str, Any]:
        """Exchange a one-time code for a session.

        Args:
            email: The address the code was sent to.
            code: The code from the email.

        Returns:
            dict: Session tokens and user info.

        Raises:
            ValidationError: If the code is wrong or expired.
        """
        try:
            response = self.client.auth.verify_otp(
                {
                    "email": email.strip().lower(),
                    "token": code.strip(),
                    "type": "email",
                }
            )
        except Exception as e:
            error_msg = str(e)
            logger.error("One-time code verification failed: %s", error_msg)

            if "invalid" in error_msg.lower() or "expired" in error_msg.lower():
                raise ValidationError("Invalid or expired code") from e

            raise ValidationError(f"Verification failed: {error_msg}") from e

        if not response.user or not response.session:
            raise ValidationError("Invalid or expired code")

        user = response.user
        session = response.session
        logger.info("User signed in with one-time code: %s", user.id)

        return {
            "access_token": session.access_token,
            "refresh_token": session.refresh_token,
            "user_id": str(user.id),
            "email": user.email or email,
            "expires_in": session.expires_in or 3600,
        }
