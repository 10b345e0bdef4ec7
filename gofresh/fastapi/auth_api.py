# gofresh/fastapi/auth_api.py
# Register / login / refresh for farmers and buyers.

import os
import time
from datetime import datetime, timezone
from typing import Any, Dict

import bcrypt
import structlog
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pymongo.errors import DuplicateKeyError

from gofresh.app_config import AppConfig
from gofresh.fastapi.deps import get_config
from gofresh.fastapi.security import auth_identity, jwt_decode, jwt_issue
from gofresh.models.auth_models import Identity, LoginRequest, RefreshRequest, RegisterRequest
from gofresh.mongo import get_db

logger = structlog.stdlib.get_logger()

router = APIRouter(prefix="/api/v1", tags=["auth"])


def _user_public_payload(u: dict) -> Dict[str, Any]:
    return {"userId": u.get("userId"), "name": u.get("name", ""), "email": u.get("email", ""), "role": u.get("role", "")}


def _new_user_id(role: str) -> str:
    # e.g. FAR1A2B3C1718000000 / BUY9F8E7D1718000000
    return f"{role[:3].upper()}{os.urandom(3).hex().upper()}{int(time.time())}"


@router.post("/auth/register")
def api_register(req: RegisterRequest, config: AppConfig = Depends(get_config)):
    users = get_db().users
    email = req.email.strip().lower()
    role = req.role.value

    if users.find_one({"email": email}):
        raise HTTPException(status_code=400, detail="User already exists")

    hashed = bcrypt.hashpw(req.password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")
    user_doc = {
        "userId": _new_user_id(role),
        "name": req.name.strip(),
        "email": email,
        "password": hashed,
        "role": role,
        "phone": req.phone,
        "address": req.address,
        "createdAt": datetime.now(tz=timezone.utc),
    }
    try:
        users.insert_one(user_doc)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="User already exists")

    logger.info("user_registered", user_id=user_doc["userId"], role=role)
    tokens = jwt_issue(_user_public_payload(user_doc), config)
    return JSONResponse(status_code=201, content={"ok": True, "user": _user_public_payload(user_doc), **tokens})


@router.post("/auth/login")
def api_login(req: LoginRequest, config: AppConfig = Depends(get_config)):
    q: Dict[str, Any] = {"email": req.email.strip().lower()}
    if req.role:
        q["role"] = req.role.value

    u = get_db().users.find_one(q)
    if not u:
        raise HTTPException(status_code=404, detail="User not found")
    if not bcrypt.checkpw(req.password.encode("utf-8"), u.get("password", "").encode("utf-8")):
        raise HTTPException(status_code=400, detail="Invalid password")

    tokens = jwt_issue(_user_public_payload(u), config)
    return {"ok": True, "user": _user_public_payload(u), **tokens}


@router.post("/auth/refresh")
def api_refresh(req: RefreshRequest, config: AppConfig = Depends(get_config)):
    payload = jwt_decode(req.refresh_token, config)
    if payload.get("type") != "refresh":
        raise HTTPException(status_code=401, detail="Not a refresh token")

    ident = payload.get("user") or {}
    if not ident.get("userId"):
        raise HTTPException(status_code=401, detail="Invalid token payload")
    new = jwt_issue(ident, config)
    return {"ok": True, "access_token": new["access_token"]}


@router.get("/me")
def api_me(identity: Identity = Depends(auth_identity)):
    u = get_db().users.find_one({"userId": identity.userId})
    if not u:
        raise HTTPException(status_code=404, detail="User not found")
    return {"ok": True, "user": _user_public_payload(u)}
