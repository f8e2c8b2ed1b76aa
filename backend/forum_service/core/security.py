"""
Caller identity.

Authentication happens upstream; the auth layer forwards the opaque user id
and role as request headers.
"""

from dataclasses import dataclass

from fastapi import Request

from forum_service.core.config import settings


class AuthenticationRequired(Exception):
    """Raised when a route needs a caller and none was supplied."""


@dataclass(frozen=True)
class Caller:
    """Authenticated user as seen by the forum."""

    user_id: str
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role.lower() == settings.admin_role.lower()


async def get_optional_caller(request: Request) -> Caller | None:
    """Read the caller from the auth headers, or None when anonymous."""
    user_id = (request.headers.get(settings.auth_user_header) or "").strip()
    if not user_id:
        return None
    role = (request.headers.get(settings.auth_role_header) or "user").strip()
    return Caller(user_id=user_id, role=role or "user")


async def require_caller(request: Request) -> Caller:
    """Dependency for routes that need an authenticated caller."""
    caller = await get_optional_caller(request)
    if caller is None:
        raise AuthenticationRequired()
    return caller
