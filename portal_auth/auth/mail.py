"""
Outgoing email for verification codes, password resets and administrative
credential resets.

Delivery itself belongs to the mail provider; LoggingEmailSender only
records that a message would be sent. Replace it through the
get_email_sender dependency to plug in a real provider.
"""
import logging

logger = logging.getLogger(__name__)


class EmailSender:
    """Interface for delivering one-time codes. No retries, no delivery receipts."""

    def send_verification_email(self, email: str, code: str) -> None:
        raise NotImplementedError

    def send_password_reset_email(self, email: str, code: str) -> None:
        raise NotImplementedError

    def send_user_password_reset_email(self, email: str, first_name: str, password: str) -> None:
        """Temporary password set by an administrator."""
        raise NotImplementedError

    def send_user_two_factor_reset_email(self, email: str, first_name: str) -> None:
        """Notice that an administrator removed two-factor authentication."""
        raise NotImplementedError


class LoggingEmailSender(EmailSender):
    """Writes messages to the log instead of sending them (development)."""

    def send_verification_email(self, email: str, code: str) -> None:
        logger.info(f"Sending verification email to {email}")
        logger.debug(f"Verification code for {email}: {code}")

    def send_password_reset_email(self, email: str, code: str) -> None:
        logger.info(f"Sending password reset email to {email}")
        logger.debug(f"Password reset code for {email}: {code}")

    def send_user_password_reset_email(self, email: str, first_name: str, password: str) -> None:
        logger.info(f"Sending temporary password email to {email}")
        logger.debug(f"Temporary password for {email}: {password}")

    def send_user_two_factor_reset_email(self, email: str, first_name: str) -> None:
        logger.info(f"Sending two-factor reset notice to {email}")
