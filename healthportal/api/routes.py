"""Authentication routes for the healthcare portal API.

All responses use the ``{success, message, data?, errors?}`` envelope with
camelCase keys, matching what the SPA expects.
"""
from typing import Optional

from fastapi import APIRouter, Depends, status

from healthportal.api.responses import envelope
from healthportal.core.auth import (
    get_auth_service,
    get_bearer_token,
    get_current_user,
    get_optional_user,
)
from healthportal.core.exceptions import ValidationFailed
from healthportal.core.logging import get_logger
from healthportal.domain.access import route_table
from healthportal.domain.user import (
    CurrentUser,
    LoginRequest,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordConfirmRequest,
    ResetPasswordRequest,
    VerifyEmailRequest,
)
from healthportal.services.auth_service import AuthService

logger = get_logger(__name__)
router = APIRouter(prefix="/auth", tags=["Auth"])


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(req: RegisterRequest, service: AuthService = Depends(get_auth_service)):
    """Create an account and return the user with a fresh token pair.

    Example:
        POST /api/auth/register
        {"email": "a@x.com", "password": "secret1", "firstName": "Ann",
         "lastName": "Lee", "role": "patient"}
    """
    result = service.register(req)
    return envelope("Registration successful", result.to_response(), status_code=status.HTTP_201_CREATED)


@router.post("/login")
def login(req: LoginRequest, service: AuthService = Depends(get_auth_service)):
    """Authenticate with email and password."""
    result = service.login(req.email, req.password)
    return envelope("Login successful", result.to_response())


@router.post("/refresh")
def refresh(req: Optional[RefreshRequest] = None, service: AuthService = Depends(get_auth_service)):
    """Exchange a refresh token for a new token pair."""
    if req is None or not req.refresh_token:
        raise ValidationFailed("Refresh token required", errors={"refreshToken": "Refresh token required"})
    pair = service.refresh(req.refresh_token)
    return envelope("Token refreshed successfully", pair.to_response())


@router.post("/logout")
def logout(
    token: Optional[str] = Depends(get_bearer_token),
    service: AuthService = Depends(get_auth_service),
):
    """Always succeeds. Tokens are discarded by the client."""
    service.logout(token)
    return envelope("Logged out successfully")


@router.post("/reset-password")
def request_password_reset(req: ResetPasswordRequest, service: AuthService = Depends(get_auth_service)):
    """Start a password reset. The response does not reveal whether the email exists."""
    message = service.request_password_reset(req.email)
    return envelope(message)


@router.post("/reset-password/confirm")
def confirm_password_reset(req: ResetPasswordConfirmRequest, service: AuthService = Depends(get_auth_service)):
    service.reset_password(req.token, req.password)
    return envelope("Password has been reset successfully")


@router.post("/verify-email")
def verify_email(req: VerifyEmailRequest, service: AuthService = Depends(get_auth_service)):
    service.verify_email(req.token)
    return envelope("Email verified successfully")


@router.get("/me")
def me(
    current_user: CurrentUser = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
):
    """Get current authenticated user info."""
    user = service.get_user(current_user.id)
    return envelope("Current user", {"user": user.model_dump(mode="json", by_alias=True)})


@router.get("/routes")
def routes(current_user: Optional[CurrentUser] = Depends(get_optional_user)):
    """Role allow-lists for the client router, plus the caller's role if signed in."""
    data = route_table()
    data["currentRole"] = current_user.role.value if current_user else None
    return envelope("Route access table", data)
