"""Routing and identity metadata attached to every backend call."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Role(str, Enum):
    """Known actor roles. Other non-empty role names are accepted as-is."""

    ADMIN = "admin"
    MANAGER = "manager"
    AGENT = "agent"
    VIEWER = "viewer"


class CallContext(BaseModel):
    """Immutable tenant/role/preview triple for outgoing requests."""

    model_config = ConfigDict(frozen=True)

    tenant: str = Field(min_length=1, description="Tenant identifier")
    role: str = Field(default=Role.ADMIN.value, min_length=1, description="Actor role")
    preview: bool = Field(
        default=True, description="Run the call in non-mutating simulation mode"
    )

    @field_validator("tenant", "role")
    @classmethod
    def strip_blank(cls, v: str) -> str:
        """Reject whitespace-only values."""
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("role", mode="before")
    @classmethod
    def role_value(cls, v: Any) -> Any:
        """Accept Role members by storing their plain string value."""
        if isinstance(v, Role):
            return v.value
        return v

    @property
    def is_known_role(self) -> bool:
        """Whether the role is one of the Role members."""
        return self.role in {r.value for r in Role}

    def headers(self) -> dict[str, str]:
        """Transport headers carrying this context."""
        return {
            "X-Tenant": self.tenant,
            "X-Role": self.role,
            "X-Preview": "true" if self.preview else "false",
        }
