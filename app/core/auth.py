import os
import time
from dataclasses import dataclass
from typing import Optional, Dict, Any

import requests
from fastapi import Depends, Header, HTTPException
from jose import jwt, JWTError
from jose.utils import base64url_decode
from loguru import logger

from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.backends import default_backend

from app.schemas.enums import UserRole


# ------------------------------------------------------------
# Configuration
# ------------------------------------------------------------
SUPABASE_URL = os.getenv("SUPABASE_URL", "")

AUTH_VERIFY_MODE = os.getenv("AUTH_VERIFY_MODE", "jwks").lower()  # "jwks" or "hs256"
AUTH_DEBUG = os.getenv("AUTH_DEBUG", "false").lower() in ("1", "true", "yes")

_JWKS_CACHE: Dict[str, Any] = {"ts": 0, "jwks": None}
_JWKS_TTL_SECONDS = int(os.getenv("JWKS_TTL_SECONDS", "600"))


@dataclass(frozen=True)
class AuthUser:
    user_id: str
    role: UserRole = UserRole.customer

    @property
    def is_admin(self) -> bool:
        return self.role is UserRole.admin


# ------------------------------------------------------------
# Helpers
# ------------------------------------------------------------
def _get_bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing Authorization header")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=401, detail="Invalid Authorization header format")

    return token.strip()


def _role_from_claims(payload: Dict[str, Any]) -> UserRole:
    """
    Roles are assigned server side in Supabase app_metadata,
    never in user_metadata which the user can edit.
    """
    raw = (payload.get("app_metadata") or {}).get("role")
    try:
        return UserRole(raw) if raw else UserRole.customer
    except ValueError:
        logger.warning(f"[auth] unknown role claim={raw!r}, treating as customer")
        return UserRole.customer


# ------------------------------------------------------------
# JWKS Fetch + Cache
# ------------------------------------------------------------
def _fetch_jwks() -> Dict[str, Any]:
    anon_key = os.getenv("SUPABASE_ANON_KEY")
    if not anon_key:
        raise HTTPException(
            status_code=500,
            detail="SUPABASE_ANON_KEY not set (required for JWKS mode)",
        )

    resp = requests.get(
        f"{SUPABASE_URL}/auth/v1/.well-known/jwks.json",
        headers={"apikey": anon_key},
        timeout=10,
    )

    try:
        data = resp.json()
    except ValueError:
        raise HTTPException(
            status_code=500,
            detail=f"Invalid JWKS JSON response: HTTP {resp.status_code}",
        )

    if resp.status_code != 200 or "keys" not in data:
        raise HTTPException(status_code=500, detail=f"Invalid JWKS response: {data}")

    return data


def _get_cached_jwks(force_refresh: bool = False) -> Dict[str, Any]:
    now = time.time()

    if (
        not force_refresh
        and _JWKS_CACHE["jwks"]
        and now - _JWKS_CACHE["ts"] < _JWKS_TTL_SECONDS
    ):
        return _JWKS_CACHE["jwks"]

    jwks = _fetch_jwks()
    _JWKS_CACHE["jwks"] = jwks
    _JWKS_CACHE["ts"] = now
    return jwks


def _find_jwk(kid: str) -> Optional[Dict[str, Any]]:
    key_data = next((k for k in _get_cached_jwks()["keys"] if k.get("kid") == kid), None)
    if key_data is None:
        # key rotation: refresh once
        key_data = next(
            (k for k in _get_cached_jwks(force_refresh=True)["keys"] if k.get("kid") == kid),
            None,
        )
    return key_data


def _public_key_from_jwk(jwk: Dict[str, Any]):
    x = base64url_decode(jwk["x"].encode())
    y = base64url_decode(jwk["y"].encode())

    public_numbers = ec.EllipticCurvePublicNumbers(
        int.from_bytes(x, "big"),
        int.from_bytes(y, "big"),
        ec.SECP256R1(),
    )
    return public_numbers.public_key(default_backend())


# ------------------------------------------------------------
# Verification Modes
# ------------------------------------------------------------
def _verify_jwt_hs256(token: str) -> Dict[str, Any]:
    secret = os.getenv("SUPABASE_JWT_SECRET")
    if not secret:
        raise HTTPException(status_code=500, detail="SUPABASE_JWT_SECRET not set")

    try:
        return jwt.decode(token, secret, algorithms=["HS256"], options={"verify_aud": False})
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")


def _verify_jwt_jwks(token: str) -> Dict[str, Any]:
    try:
        header = jwt.get_unverified_header(token)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token header")

    alg = header.get("alg")
    kid = header.get("kid")

    if AUTH_DEBUG:
        logger.debug(f"[auth] header.alg={alg} header.kid={kid}")

    if not kid:
        raise HTTPException(status_code=401, detail="Token missing kid")
    if alg != "ES256":
        raise HTTPException(status_code=401, detail=f"Unsupported JWT alg: {alg}")

    key_data = _find_jwk(kid)
    if not key_data:
        raise HTTPException(status_code=401, detail="Public key not found for kid")

    try:
        return jwt.decode(
            token,
            _public_key_from_jwk(key_data),
            algorithms=["ES256"],
            options={"verify_aud": False},
        )
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")


# ------------------------------------------------------------
# Dependencies
# ------------------------------------------------------------
def get_current_user(
    authorization: Optional[str] = Header(default=None),
) -> AuthUser:
    token = _get_bearer_token(authorization)

    if AUTH_VERIFY_MODE == "hs256":
        payload = _verify_jwt_hs256(token)
    elif AUTH_VERIFY_MODE == "jwks":
        payload = _verify_jwt_jwks(token)
    else:
        raise HTTPException(status_code=500, detail=f"Invalid AUTH_VERIFY_MODE: {AUTH_VERIFY_MODE}")

    sub = payload.get("sub")
    if not sub:
        raise HTTPException(status_code=401, detail="Token missing sub claim")

    user = AuthUser(user_id=str(sub), role=_role_from_claims(payload))

    if AUTH_DEBUG:
        logger.debug(f"[auth] user_id={user.user_id} role={user.role.value}")

    return user


def require_admin(user: AuthUser = Depends(get_current_user)) -> AuthUser:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin role required")
    return user
