from __future__ import annotations

from typing import Any, Callable, Mapping

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from app.errors import ApiError
from app.settings import get_settings

bearer_scheme = HTTPBearer(auto_error=False)

# Sessions and credentials live in the external auth backend; this module only
# verifies the access tokens it issues.
ADMIN_PERMISSION_KEYS: tuple[str, ...] = (
    "locations",
    "employees",
    "assignments",
    "organization",
    "imports",
    "migrations",
    "audit",
)
ADMIN_ROLES = frozenset({"admin", "hr", "executive"})


def empty_permissions() -> dict[str, dict[str, bool]]:
    return {key: {"read": False, "write": False} for key in ADMIN_PERMISSION_KEYS}


def normalize_permissions(raw: Mapping[str, Any] | None) -> dict[str, dict[str, bool]]:
    normalized = empty_permissions()
    if not isinstance(raw, Mapping):
        return normalized

    for key, value in raw.items():
        if key not in normalized:
            continue
        if isinstance(value, Mapping):
            read = bool(value.get("read"))
            write = bool(value.get("write"))
        else:
            read = bool(value)
            write = bool(value)
        if write:
            read = True
        normalized[key] = {"read": read, "write": write}
    return normalized


def has_permission(claims: Mapping[str, Any], permission: str, *, write: bool = False) -> bool:
    if permission not in ADMIN_PERMISSION_KEYS:
        return False
    if bool(claims.get("is_super_admin")):
        return True

    # Tokens without a permission map carry the role's full rights.
    if claims.get("permissions") is None:
        return True

    permissions = normalize_permissions(claims.get("permissions"))  # type: ignore[arg-type]
    permission_value = permissions[permission]
    if write:
        return permission_value["write"]
    return permission_value["read"] or permission_value["write"]


def decode_access_token(token: str) -> dict[str, Any]:
    settings = get_settings()
    if not settings.jwt_secret:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token verification is not configured.")
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"require_sub": True, "require_exp": True},
        )
    except JWTError as exc:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token is invalid.") from exc

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token subject is invalid.")

    role = str(payload.get("role") or "").lower()
    if role not in ADMIN_ROLES:
        raise ApiError(status_code=403, code="FORBIDDEN", message="Insufficient permissions.")

    return payload


def require_admin(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> dict[str, Any]:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Missing bearer token.")

    payload = decode_access_token(credentials.credentials)

    request.state.actor = "admin"
    request.state.actor_id = str(payload.get("email") or payload.get("sub"))
    return payload


def require_admin_permission(permission: str, *, write: bool = False) -> Callable[..., dict[str, Any]]:
    if permission not in ADMIN_PERMISSION_KEYS:
        raise ValueError(f"Unknown admin permission: {permission}")

    def _dependency(claims: dict[str, Any] = Depends(require_admin)) -> dict[str, Any]:
        if not has_permission(claims, permission, write=write):
            raise ApiError(status_code=403, code="FORBIDDEN", message="Insufficient permissions.")
        return claims

    return _dependency
