# gofresh/models/auth_models.py

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator


class Role(str, Enum):
    FARMER = "farmer"
    BUYER = "buyer"

    @classmethod
    def parse(cls, raw: Optional[str]) -> Optional["Role"]:
        """Map a role claim to a Role; anything unknown is None."""
        value = (raw or "").strip().lower()
        for role in cls:
            if role.value == value:
                return role
        return None


class Identity(BaseModel):
    """Who is calling, as carried in the access token."""

    userId: str
    name: str = ""
    email: str = ""
    role: Optional[Role] = None

    @field_validator("role", mode="before")
    @classmethod
    def _parse_role(cls, v: Any) -> Optional[Role]:
        if isinstance(v, Role) or v is None:
            return v
        return Role.parse(str(v))

    def public_payload(self) -> Dict[str, Any]:
        return {
            "userId": self.userId,
            "name": self.name,
            "email": self.email,
            "role": self.role.value if self.role else "",
        }


def _loose_email(v: str) -> str:
    v = (v or "").strip()
    if "@" not in v or " " in v:
        raise ValueError("invalid email format (expected something like user@host)")
    return v


class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: str
    password: str = Field(..., min_length=6)
    role: Role
    phone: Optional[str] = None
    address: Optional[str] = None

    @field_validator("email")
    @classmethod
    def _email(cls, v: str) -> str:
        return _loose_email(v)


class LoginRequest(BaseModel):
    email: str
    password: str
    role: Optional[Role] = None

    @field_validator("email")
    @classmethod
    def _email(cls, v: str) -> str:
        return _loose_email(v)


class RefreshRequest(BaseModel):
    refresh_token: str
