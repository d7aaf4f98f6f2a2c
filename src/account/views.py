from drf_spectacular.utils import extend_schema
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework import permissions, status
from rest_framework_simplejwt.exceptions import InvalidToken, TokenError
from rest_framework_simplejwt.serializers import TokenRefreshSerializer
from rest_framework_simplejwt.token_blacklist.models import BlacklistedToken, OutstandingToken
from rest_framework_simplejwt.tokens import RefreshToken
from django.conf import settings
from django.contrib.auth import authenticate, get_user_model
from django.db import IntegrityError, transaction
import logging

from astroluna.exceptions import ServiceError
from credits.services import get_balance
from ratelimit.policies import client_ip, rate_limit
from .emails import reset_url, send_password_reset_email, send_verification_email, send_welcome_email
from .models import PasswordResetToken
from .serializers import (
    ChangePasswordSerializer,
    DeleteAccountSerializer,
    LoginSerializer,
    PasswordResetConfirmSerializer,
    PasswordResetRequestSerializer,
    ProfileSerializer,
    RefreshTokenSerializer,
    SignupSerializer,
    TokenSerializer,
    UserSerializer,
)

User = get_user_model()
logger = logging.getLogger('account')
security_logger = logging.getLogger('security')

AUTH_RESPONSE = {
    'type': 'object',
    'properties': {
        'success': {'type': 'boolean'},
        'message': {'type': 'string'},
        'user': {'type': 'object'},
        'credits': {'type': 'integer'},
        'access': {'type': 'string'},
        'refresh': {'type': 'string'},
    }
}

MESSAGE_RESPONSE = {
    'type': 'object',
    'properties': {
        'success': {'type': 'boolean'},
        'message': {'type': 'string'},
    }
}


class EmailAlreadyRegistered(ServiceError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "User with this email already exists"
    default_code = "email_taken"


class InvalidCredentials(ServiceError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = "Invalid email or password"
    default_code = "invalid_credentials"


def _auth_payload(user, message):
    refresh = RefreshToken.for_user(user)
    return {
        "success": True,
        "message": message,
        "user": UserSerializer(user).data,
        "credits": get_balance(user),
        "access": str(refresh.access_token),
        "refresh": str(refresh),
    }


def email_registered(email) -> bool:
    return User.objects.filter(email=email).exists()


def blacklist_all_tokens(user) -> int:
    """Blacklist every refresh token issued to `user`; returns how many were newly blacklisted."""
    count = 0
    for outstanding in OutstandingToken.objects.filter(user=user):
        _, created = BlacklistedToken.objects.get_or_create(token=outstanding)
        count += int(created)
    return count


def _password_reset_key(request):
    """`password-reset:<email>`: the posted email, else the signed-in user's, else the client IP."""
    email = str(request.data.get("email") or "").strip().lower()
    user = getattr(request, "user", None)
    if not email and user is not None and user.is_authenticated:
        email = user.email
    return f"password-reset:{email or client_ip(request)}"


@extend_schema(tags=['Account'], request=SignupSerializer, responses={201: AUTH_RESPONSE})
class SignupView(APIView):
    permission_classes = [permissions.AllowAny]
    authentication_classes = []

    @rate_limit("register")
    def post(self, request):
        serializer = SignupSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        if email_registered(data["email"]):
            raise EmailAlreadyRegistered()

        # a concurrent signup can still win the unique index between the check and the insert
        try:
            with transaction.atomic():
                user = User.objects.create_user(
                    email=data["email"],
                    password=data["password"],
                    full_name=data["full_name"],
                    phone=data["phone"],
                    language=data.get("language") or User.LANGUAGE_EN,
                    currency=data.get("currency") or User.CURRENCY_EUR,
                )
                user.issue_verification_token()
        except IntegrityError:
            logger.info("signup: email already registered by a concurrent request")
            raise EmailAlreadyRegistered()

        send_verification_email(user)
        logger.info("signup: created user id=%s", user.pk)
        return Response(_auth_payload(user, "Account created successfully"), status=status.HTTP_201_CREATED)


@extend_schema(tags=['Account'], request=LoginSerializer, responses={200: AUTH_RESPONSE})
class LoginView(APIView):
    permission_classes = [permissions.AllowAny]
    authentication_classes = []

    @rate_limit("auth")
    def post(self, request):
        serializer = LoginSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        email = serializer.validated_data["email"]

        user = authenticate(request, email=email, password=serializer.validated_data["password"])
        if user is None or user.deleted_at is not None:
            security_logger.warning("failed login", extra={"email": email, "ip": client_ip(request)})
            raise InvalidCredentials()

        return Response(_auth_payload(user, "Login successful"))


@extend_schema(tags=['Account'], request=RefreshTokenSerializer, responses={200: AUTH_RESPONSE})
class RefreshTokenView(APIView):
    permission_classes = [permissions.AllowAny]
    authentication_classes = []

    def post(self, request):
        serializer = TokenRefreshSerializer(data=request.data)
        try:
            serializer.is_valid(raise_exception=True)
        except TokenError as e:
            raise InvalidToken(e.args[0])
        return Response({"success": True, **serializer.validated_data})


@extend_schema(tags=['Account'], request=RefreshTokenSerializer, responses={200: MESSAGE_RESPONSE})
class LogoutView(APIView):

    def post(self, request):
        serializer = RefreshTokenSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            RefreshToken(serializer.validated_data["refresh"]).blacklist()
        except TokenError:
            raise ServiceError("Invalid or expired refresh token")
        return Response({"success": True, "message": "Logged out successfully"})


@extend_schema(tags=['Account'], request=None, responses={200: MESSAGE_RESPONSE})
class LogoutAllView(APIView):
    """Revoke every refresh token the user holds, signing out all devices.

    Access tokens already issued stay valid until they expire.
    """

    def post(self, request):
        revoked = blacklist_all_tokens(request.user)
        logger.info("logout-all: user id=%s, %d refresh tokens revoked", request.user.pk, revoked)
        return Response({"success": True, "message": "Logged out from all devices successfully"})


@extend_schema(tags=['Account'], request=PasswordResetRequestSerializer, responses={200: MESSAGE_RESPONSE})
class PasswordResetRequestView(APIView):
    """Always answers the same way so the endpoint cannot be used to discover which emails have accounts."""
    permission_classes = [permissions.AllowAny]
    authentication_classes = []

    @rate_limit("password_reset", key=_password_reset_key)
    def post(self, request):
        serializer = PasswordResetRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        body = {"success": True, "message": "If this email exists, you will receive a password reset link"}
        user = User.objects.active().filter(email=serializer.validated_data["email"]).first()
        if user is None:
            return Response(body)

        reset = PasswordResetToken.issue(user)
        send_password_reset_email(user, reset.token)
        logger.info("password reset requested for user id=%s", user.pk)

        if settings.APP_ENV == "development":
            body["reset_token"] = reset.token
            body["reset_url"] = reset_url(reset.token)
        return Response(body)


@extend_schema(tags=['Account'], request=PasswordResetConfirmSerializer, responses={200: MESSAGE_RESPONSE})
class PasswordResetConfirmView(APIView):
    permission_classes = [permissions.AllowAny]
    authentication_classes = []

    def post(self, request):
        serializer = PasswordResetConfirmSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        reset = (
            PasswordResetToken.objects.select_related("user")
            .filter(token=serializer.validated_data["token"], used_at__isnull=True)
            .first()
        )
        if reset is None or not reset.user.is_active:
            raise ServiceError("Invalid or expired reset token")
        if reset.is_expired:
            raise ServiceError("Reset token has expired")

        with transaction.atomic():
            user = reset.user
            user.set_password(serializer.validated_data["new_password"])
            user.save(update_fields=["password", "updated_at"])
            reset.mark_used()

        logger.info("password reset completed for user id=%s", user.pk)
        return Response({"success": True, "message": "Password updated successfully"})


@extend_schema(tags=['Account'], request=ProfileSerializer, responses={200: UserSerializer})
class MeView(APIView):

    def get(self, request):
        return Response({
            "success": True,
            "user": UserSerializer(request.user).data,
            "credits": get_balance(request.user),
        })

    def put(self, request):
        return self._update(request, partial=False)

    def patch(self, request):
        return self._update(request, partial=True)

    def _update(self, request, partial):
        serializer = ProfileSerializer(request.user, data=request.data, partial=partial)
        serializer.is_valid(raise_exception=True)
        user = serializer.save()
        return Response({
            "success": True,
            "message": "Profile updated successfully",
            "user": UserSerializer(user).data,
        })


@extend_schema(tags=['Account'], request=ChangePasswordSerializer, responses={200: MESSAGE_RESPONSE})
class ChangePasswordView(APIView):

    @rate_limit("password_reset", key=_password_reset_key)
    def post(self, request):
        serializer = ChangePasswordSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        user = request.user
        if not user.check_password(serializer.validated_data["current_password"]):
            raise ServiceError("Current password is incorrect")

        user.set_password(serializer.validated_data["new_password"])
        user.save(update_fields=["password", "updated_at"])
        return Response({"success": True, "message": "Password updated successfully"})


@extend_schema(tags=['Account'], request=TokenSerializer, responses={200: MESSAGE_RESPONSE})
class VerifyEmailView(APIView):
    permission_classes = [permissions.AllowAny]
    authentication_classes = []

    def post(self, request):
        serializer = TokenSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        user = User.objects.active().filter(email_verification_token=serializer.validated_data["token"]).first()
        if user is None:
            raise ServiceError("Invalid verification token")
        user.mark_verified()
        send_welcome_email(user)
        logger.info("email verified for user id=%s", user.pk)
        return Response({"success": True, "message": "Email verified successfully"})


@extend_schema(tags=['Account'], request=None, responses={200: MESSAGE_RESPONSE})
class ResendVerificationView(APIView):

    @rate_limit("password_reset", key=_password_reset_key)
    def post(self, request):
        user = request.user
        if user.is_verified:
            raise ServiceError("Email is already verified")
        user.issue_verification_token()
        send_verification_email(user)
        return Response({"success": True, "message": "Verification email sent"})


@extend_schema(tags=['Account'], request=DeleteAccountSerializer, responses={200: MESSAGE_RESPONSE})
class DeleteAccountView(APIView):

    @rate_limit("password_reset", key=_password_reset_key)
    def delete(self, request):
        serializer = DeleteAccountSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        user = request.user
        if not user.check_password(serializer.validated_data["password"]):
            raise ServiceError("Invalid password")

        with transaction.atomic():
            blacklist_all_tokens(user)
            user.soft_delete()

        logger.info("account id=%s soft-deleted", user.pk)
        return Response({"success": True, "message": "Account deleted successfully"})
