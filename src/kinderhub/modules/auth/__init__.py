"""Authentication module."""

from kinderhub.modules.auth.router import router
from kinderhub.modules.auth.schemas import LoginRequest, LoginResponse, TokenResponse

__all__ = ["router", "LoginRequest", "LoginResponse", "TokenResponse"]
