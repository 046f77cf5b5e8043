from dataclasses import dataclass

from fastapi import HTTPException, status
from jose import JWTError, jwt
from starlette.requests import Request

from realty_crm.core.config import get_settings


@dataclass
class AuthUser:
    sub: str
    role: str


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(request: Request) -> AuthUser:
    """Decode the bearer token issued by the identity service; no credential checks happen here."""

    auth_header = request.headers.get("authorization", "")
    token = auth_header.replace("Bearer ", "") if auth_header.startswith("Bearer ") else ""

    if not token:
        raise _unauthorized("Missing bearer token")

    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        raise _unauthorized("Invalid bearer token") from exc

    subject = payload.get("sub")
    role = payload.get("role")
    if subject is None or not isinstance(role, str):
        raise _unauthorized("Token is missing required claims")
    return AuthUser(sub=str(subject), role=role)
