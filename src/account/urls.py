from django.urls import path
from . import views

urlpatterns = [
    path("signup", views.SignupView.as_view(), name="auth-signup"),
    path("login", views.LoginView.as_view(), name="auth-login"),
    path("refresh-token", views.RefreshTokenView.as_view(), name="auth-refresh-token"),
    path("logout", views.LogoutView.as_view(), name="auth-logout"),
    path("logout-all", views.LogoutAllView.as_view(), name="auth-logout-all"),
    path("reset-password", views.PasswordResetRequestView.as_view(), name="auth-reset-password"),
    path("reset-password/confirm", views.PasswordResetConfirmView.as_view(), name="auth-reset-password-confirm"),
    path("me", views.MeView.as_view(), name="auth-me"),
    path("change-password", views.ChangePasswordView.as_view(), name="auth-change-password"),
    path("verify-email", views.VerifyEmailView.as_view(), name="auth-verify-email"),
    path("resend-verification", views.ResendVerificationView.as_view(), name="auth-resend-verification"),
    path("delete-account", views.DeleteAccountView.as_view(), name="auth-delete-account"),
]
