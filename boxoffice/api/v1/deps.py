"""
Shared endpoint dependencies
"""

from typing import Optional
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from boxoffice.core.container import ServiceContainer
from boxoffice.core.exceptions import AuthenticationError

bearer_scheme = HTTPBearer(auto_error=False)


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


async def optional_staff(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    container: ServiceContainer = Depends(get_container)
) -> Optional[str]:
    """
    Resolve the staff actor from a bearer token when one is sent; the token subject is the actor name
    """
    if credentials is None:
        return None
    if credentials.scheme.lower() != "bearer":
        raise AuthenticationError("Staff credentials required")
    payload = container.security.decode_token(credentials.credentials)
    return payload["sub"]


async def require_staff(staff: Optional[str] = Depends(optional_staff)) -> str:
    if staff is None:
        raise AuthenticationError("Staff credentials required")
    return staff
