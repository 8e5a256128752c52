# showroom/schemas/admin.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SignInRequest(BaseModel):
    """`user_id` comes from the upstream identity provider."""
    user_id: str = Field(..., min_length=1, max_length=64)

    @field_validator("user_id")
    @classmethod
    def _strip(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("user_id must not be empty")
        return v


class AdminSessionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    started_at: datetime
    expires_at: Optional[datetime] = None


class AdminSessionCreated(AdminSessionRead):
    token: str


class UploadResult(BaseModel):
    url: str


class RemoveResult(BaseModel):
    url: str
    deleted: bool


class BucketStatusRead(BaseModel):
    bucket: str
    status: str


class StorageInfoRead(BaseModel):
    bucket: str
    file_count: int
    total_size: int
    total_size_mb: str
