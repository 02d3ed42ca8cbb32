from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, field_validator

HostTrigger = Literal["navigation", "visibility", "focus"]


class ResourceIdInput(BaseModel):
    resource_id: str

    @field_validator("resource_id")
    @classmethod
    def validate_resource_id(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("resource_id must not be empty")
        if len(v) > 200:
            raise ValueError("resource_id must not exceed 200 characters")
        return v


class SetEnabledOutput(BaseModel):
    resource_id: str
    enabled: bool
    applied: bool
    state: str


class ResourceSummary(BaseModel):
    resource_id: str
    name: str
    enabled: bool
    state: str
    aggressive_reconciliation: bool
    sources: list[str]


class ListResourcesOutput(BaseModel):
    resources: list[ResourceSummary]


class HostEventInput(BaseModel):
    trigger: HostTrigger


class HostEventOutput(BaseModel):
    trigger: HostTrigger
    notified: list[str]


class ClearCacheOutput(BaseModel):
    removed: int


class ResetResourceOutput(BaseModel):
    resource_id: str
    enabled: bool
    applied: bool
    state: str
