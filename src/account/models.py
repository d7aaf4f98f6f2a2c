"""
Account models.

`User` logs in with its email address. Deleting an account is a soft delete:
the row stays for billing history, `deleted_at` is set and the account is
deactivated.
"""
import secrets

from django.conf import settings
from django.contrib.auth.models import AbstractBaseUser, BaseUserManager, PermissionsMixin
from django.db import models
from django.utils import timezone


class UserManager(BaseUserManager):
    use_in_migrations = True

    def _create_user(self, email, password, **extra_fields):
        if not email:
            raise ValueError("An email address is required")
        email = self.normalize_email(email).lower()
        user = self.model(email=email, **extra_fields)
        user.set_password(password)
        user.save(using=self._db)
        return user

    def create_user(self, email, password=None, **extra_fields):
        extra_fields.setdefault("is_staff", False)
        extra_fields.setdefault("is_superuser", False)
        return self._create_user(email, password, **extra_fields)

    def create_superuser(self, email, password=None, **extra_fields):
        extra_fields.setdefault("is_staff", True)
        extra_fields.setdefault("is_superuser", True)
        extra_fields.setdefault("is_verified", True)
        if extra_fields.get("is_staff") is not True:
            raise ValueError("Superuser must have is_staff=True.")
        if extra_fields.get("is_superuser") is not True:
            raise ValueError("Superuser must have is_superuser=True.")
        return self._create_user(email, password, **extra_fields)

    def active(self):
        return self.filter(is_active=True, deleted_at__isnull=True)


class User(AbstractBaseUser, PermissionsMixin):
    LANGUAGE_EN = "en"
    LANGUAGE_ES = "es"
    LANGUAGE_DE = "de"
    LANGUAGE_CHOICES = [
        (LANGUAGE_EN, "English"),
        (LANGUAGE_ES, "Español"),
        (LANGUAGE_DE, "Deutsch"),
    ]

    CURRENCY_EUR = "EUR"
    CURRENCY_USD = "USD"
    CURRENCY_GBP = "GBP"
    CURRENCY_CHOICES = [
        (CURRENCY_EUR, "Euro"),
        (CURRENCY_USD, "US Dollar"),
        (CURRENCY_GBP, "British Pound"),
    ]

    email = models.EmailField(unique=True)
    full_name = models.CharField(max_length=150, blank=True)
    phone = models.CharField(max_length=32, blank=True)
    language = models.CharField(max_length=2, choices=LANGUAGE_CHOICES, default=LANGUAGE_EN)
    currency = models.CharField(max_length=3, choices=CURRENCY_CHOICES, default=CURRENCY_EUR)
    is_verified = models.BooleanField(default=False)
    email_verification_token = models.CharField(max_length=64, blank=True, null=True, unique=True)
    is_active = models.BooleanField(default=True)
    is_staff = models.BooleanField(default=False)
    deleted_at = models.DateTimeField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = UserManager()

    USERNAME_FIELD = "email"
    EMAIL_FIELD = "email"
    REQUIRED_FIELDS = []

    class Meta:
        verbose_name = "User"
        verbose_name_plural = "Users"

    def __str__(self):
        return self.email

    def issue_verification_token(self) -> str:
        self.email_verification_token = secrets.token_urlsafe(32)
        self.save(update_fields=["email_verification_token", "updated_at"])
        return self.email_verification_token

    def mark_verified(self) -> None:
        self.is_verified = True
        self.email_verification_token = None
        self.save(update_fields=["is_verified", "email_verification_token", "updated_at"])

    def soft_delete(self) -> None:
        """Deactivate the account and free its email for a new registration."""
        now = timezone.now()
        self.deleted_at = now
        self.is_active = False
        self.email = f"deleted-{self.pk}-{int(now.timestamp())}@deleted.invalid"
        self.email_verification_token = None
        self.set_unusable_password()
        self.save()


class PasswordResetToken(models.Model):
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="reset_tokens")
    token = models.CharField(max_length=64, unique=True)
    expires_at = models.DateTimeField()
    used_at = models.DateTimeField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = "Password Reset Token"
        verbose_name_plural = "Password Reset Tokens"

    @classmethod
    def issue(cls, user):
        return cls.objects.create(
            user=user,
            token=secrets.token_urlsafe(32),
            expires_at=timezone.now() + settings.PASSWORD_RESET_TTL,
        )

    @property
    def is_expired(self) -> bool:
        return timezone.now() > self.expires_at

    def mark_used(self) -> None:
        self.used_at = timezone.now()
        self.save(update_fields=["used_at"])
