"""Transactional account emails, sent through Django's mail API."""
from django.conf import settings
from django.core.mail import send_mail
import logging

logger = logging.getLogger('account')


def _deliver(subject, body, recipient):
    try:
        send_mail(subject, body, settings.DEFAULT_FROM_EMAIL, [recipient], fail_silently=False)
    except Exception:
        # account changes are already committed at this point
        logger.exception("failed to send '%s' email to %s", subject, recipient)
        return False
    return True


def verification_url(token: str) -> str:
    return f"{settings.BASE_URL}/verify-email?token={token}"


def reset_url(token: str) -> str:
    return f"{settings.BASE_URL}/reset-password?token={token}"


def send_verification_email(user) -> bool:
    body = (
        f"Hello {user.full_name or user.email},\n\n"
        "Welcome to AstroLuna! Please confirm your email address:\n"
        f"{verification_url(user.email_verification_token)}\n"
    )
    return _deliver("Verify your AstroLuna account", body, user.email)


def send_password_reset_email(user, token: str) -> bool:
    body = (
        f"Hello {user.full_name or user.email},\n\n"
        "We received a request to reset your password. The link below is valid for one hour:\n"
        f"{reset_url(token)}\n\n"
        "If you did not ask for this, you can ignore this email.\n"
    )
    return _deliver("Reset your AstroLuna password", body, user.email)


def send_welcome_email(user) -> bool:
    body = (
        f"Hello {user.full_name or user.email},\n\n"
        "Your email is verified and your AstroLuna account is ready.\n"
        "Explore AstroScope horoscopes, TarotPath readings and the Zodiac Tome at:\n"
        f"{settings.BASE_URL}/dashboard\n"
    )
    return _deliver("Welcome to AstroLuna", body, user.email)
