"""Authentication schemas."""
from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import Field, field_validator

from .credential import CamelModel, Credential

FRIENDLY_NAME_MAX_LENGTH = 100


class CeremonyVerifyRequest(CamelModel):
    credential: dict[str, Any]
    friendly_name: str | None = Field(None, max_length=FRIENDLY_NAME_MAX_LENGTH)

    @field_validator("friendly_name")
    @classmethod
    def blank_as_default(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None


class LoginVerifyRequest(CamelModel):
    credential: dict[str, Any]


class BootstrapOptionsRequest(CamelModel):
    bootstrap_token: str = Field(min_length=1)


class BootstrapVerifyRequest(CeremonyVerifyRequest):
    bootstrap_token: str = Field(min_length=1)


class CredentialRenameRequest(CamelModel):
    friendly_name: str = Field(min_length=1, max_length=FRIENDLY_NAME_MAX_LENGTH)

    @field_validator("friendly_name")
    @classmethod
    def not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("friendlyName must not be blank")
        return value


class RegisterVerifyResponse(CamelModel):
    verified: bool = True
    credential_id: str


class LoginVerifyResponse(CamelModel):
    verified: bool = True
    expires_at: datetime


class BootstrapVerifyResponse(CamelModel):
    verified: bool = True
    credential_id: str
    expires_at: datetime


class BootstrapStatusResponse(CamelModel):
    bootstrap_available: bool
    credential_count: int


class CredentialInfo(CamelModel):
    id: str
    friendly_name: str
    created_at: datetime
    last_used_at: datetime | None
    device_type: str
    backed_up: bool

    @classmethod
    def from_credential(cls, credential: Credential) -> "CredentialInfo":
        return cls(
            id=credential.id,
            friendly_name=credential.friendly_name,
            created_at=credential.created_at,
            last_used_at=credential.last_used_at,
            device_type=credential.device_type.value,
            backed_up=credential.backed_up,
        )


class CredentialsResponse(CamelModel):
    credentials: list[CredentialInfo]


class SessionStatusResponse(CamelModel):
    authenticated: bool
    expires_at: datetime | None = None


class SuccessResponse(CamelModel):
    success: bool = True
