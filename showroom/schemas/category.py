# showroom/schemas/category.py
from __future__ import annotations

import re
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

_WS_RE = re.compile(r"\s+")


def _norm_spaces(v: str) -> str:
    return _WS_RE.sub(" ", v).strip()


def _norm_parent(v: Optional[str]) -> Optional[str]:
    # admin forms send "none" for a top-level category
    if v is None:
        return None
    v = v.strip()
    return None if v.lower() in {"", "none", "null"} else v


class CategoryCreate(BaseModel):
    """Payload for creating a category; `parent_id` null means top-level."""
    name: str = Field(min_length=1, max_length=255)
    parent_id: Optional[str] = Field(default=None, max_length=36)

    @field_validator("name")
    @classmethod
    def _name_normalize(cls, v: str) -> str:
        v = _norm_spaces(v)
        if not v:
            raise ValueError("name must not be empty")
        return v

    @field_validator("parent_id")
    @classmethod
    def _parent_normalize(cls, v: Optional[str]) -> Optional[str]:
        return _norm_parent(v)

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {"name": "Valves", "parent_id": None},
                {"name": "Ball Valves", "parent_id": "5f0c6f5e-1d7a-4a53-9c3e-2b8f6a1d9e10"},
            ]
        },
    )


class CategoryUpdate(BaseModel):
    """Partial update; only the fields sent are touched."""
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    parent_id: Optional[str] = Field(default=None, max_length=36)

    @field_validator("name")
    @classmethod
    def _name_normalize(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = _norm_spaces(v)
        if not v:
            raise ValueError("name must not be empty")
        return v

    @field_validator("parent_id")
    @classmethod
    def _parent_normalize(cls, v: Optional[str]) -> Optional[str]:
        return _norm_parent(v)


class CategoryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    parent_id: Optional[str] = None
    created_at: Optional[datetime] = None


class CategoryTreeNode(CategoryRead):
    children: list[CategoryRead] = []


class CategoryTree(BaseModel):
    """Top-level categories with their children; `orphans` lost their parent."""
    items: list[CategoryTreeNode]
    orphans: list[CategoryRead] = []
    hierarchy: bool = True
