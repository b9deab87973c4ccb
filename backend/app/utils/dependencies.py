from fastapi import HTTPException, Request

from .error_handlers import UnauthorizedError, get_error_message
from .jwt import decode_access_token

ACCESS_TOKEN_COOKIE = "access_token"


def extract_token(request: Request) -> str | None:
    """Bearer header wins over the auth cookie."""
    auth = request.headers.get("Authorization") or ""
    if auth.lower().startswith("bearer "):
        token = auth[7:].strip()
        if token:
            return token
    return request.cookies.get(ACCESS_TOKEN_COOKIE) or None


def principal_from_token(token: str):
    from .roles import Principal, classify_role, normalize_role

    claims = decode_access_token(token)
    role = normalize_role(claims.get("role"))
    capability = classify_role(role)
    if capability is None:
        raise UnauthorizedError(get_error_message("unauthorized"))
    try:
        principal_id = int(claims["sub"])
    except (TypeError, ValueError):
        raise UnauthorizedError(get_error_message("unauthorized"))
    return Principal(id=principal_id, role=role, capability=capability)


def get_current_principal(request: Request):
    token = extract_token(request)
    if not token:
        raise HTTPException(status_code=401, detail=get_error_message("unauthorized"))
    return principal_from_token(token)


def get_optional_principal(request: Request):
    """Like get_current_principal, but anonymous (or bad token) yields None."""
    token = extract_token(request)
    if not token:
        return None
    try:
        return principal_from_token(token)
    except UnauthorizedError:
        return None
