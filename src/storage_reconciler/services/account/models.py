"""Payload models for the account API."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _APIModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Credentials(_APIModel):
    account_id: str
    access_key: str
    secret: str


class Token(_APIModel):
    token: str = Field(..., min_length=1, description="Bearer token")
    expiration_sec: Optional[str] = None


class PermissionPayload(_APIModel):
    """Body of create/update permission requests."""

    name: str
    description: str = ""
    type: str
    actions: str = ""
    prefix: str = ""
    buckets: List[str] = Field(default_factory=list)
    policy: Optional[str] = None


class ServiceAccountPayload(_APIModel):
    """Body of create/update service account requests."""

    name: str
    description: str = ""
    permissions: List[str] = Field(default_factory=list)


class CreatedResource(_APIModel):
    id: str


class ServiceAccountCredentials(_APIModel):
    id: str
    access_key: str = ""
    secret: str = ""


class PermissionRecord(_APIModel):
    """Permission as returned by the account API."""

    id: str
    name: str = ""
    description: str = ""
    type: str = ""
    ready_state: bool = False
    actions: str = ""
    prefix: str = ""
    buckets: List[str] = Field(default_factory=list)
    policy: str = ""


class ServiceAccountRecord(_APIModel):
    """Service account as returned by the account API."""

    id: str
    name: str = ""
    description: str = ""
    enabled: bool = False
    ready_state: bool = False
    permissions: List[str] = Field(default_factory=list)
