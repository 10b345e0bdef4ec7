# gofresh/fastapi/security.py
# JWT issue/decode and the identity dependencies shared by every router.

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from gofresh.app_config import AppConfig
from gofresh.fastapi.deps import get_config
from gofresh.models.auth_models import Identity, Role

# --- one HTTPBearer scheme for the whole API (docs will show a lock) ---
bearer = HTTPBearer(scheme_name="AccessToken", bearerFormat="JWT", auto_error=False)


def _now_utc() -> datetime:
    return datetime.now(tz=timezone.utc)


# --- issue tokens with string sub and full user in 'user' ---
def jwt_issue(identity: Dict[str, Any], config: AppConfig) -> Dict[str, str]:
    now = _now_utc()
    access_exp = now + timedelta(hours=config.access_expires_h)
    refresh_exp = now + timedelta(days=config.refresh_expires_d)

    # 'sub' MUST be a string. Keep full identity in 'user'.
    sub_val = str(identity.get("userId", ""))

    access = jwt.encode(
        {"sub": sub_val, "user": identity, "type": "access",
         "iat": int(now.timestamp()), "exp": int(access_exp.timestamp())},
        config.jwt_secret_key, algorithm="HS256"
    )
    refresh = jwt.encode(
        {"sub": sub_val, "user": identity, "type": "refresh",
         "iat": int(now.timestamp()), "exp": int(refresh_exp.timestamp())},
        config.jwt_secret_key, algorithm="HS256"
    )
    return {"access_token": access, "refresh_token": refresh}


def jwt_decode(token: str, config: AppConfig) -> Dict[str, Any]:
    try:
        return jwt.decode(token, config.jwt_secret_key, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


def _identity_from_token(token: str, config: AppConfig) -> Identity:
    payload = jwt_decode(token.strip(), config)
    if payload.get("type") != "access":
        raise HTTPException(status_code=401, detail="Not an access token")

    user = payload.get("user")
    if not isinstance(user, dict) or not user.get("userId"):
        raise HTTPException(status_code=401, detail="Invalid token payload")
    return Identity(**user)


def optional_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer),
    config: AppConfig = Depends(get_config),
) -> Optional[Identity]:
    """Identity when a bearer token is sent, None for anonymous callers."""
    if not credentials or (credentials.scheme or "").lower() != "bearer":
        return None
    return _identity_from_token(credentials.credentials, config)


def auth_identity(identity: Optional[Identity] = Depends(optional_identity)) -> Identity:
    if identity is None:
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header")
    return identity


def _require_role(identity: Identity, role: Role) -> Identity:
    if identity.role is not role:
        raise HTTPException(status_code=403, detail=f"Only {role.value}s can access this endpoint")
    return identity


def require_farmer(identity: Identity = Depends(auth_identity)) -> Identity:
    """Ensure role is farmer."""
    return _require_role(identity, Role.FARMER)


def require_buyer(identity: Identity = Depends(auth_identity)) -> Identity:
    """Ensure role is buyer."""
    return _require_role(identity, Role.BUYER)
