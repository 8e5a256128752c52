# showroom/schemas/product.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from showroom.services.images import product_gallery, resolve_image_url


class SpecificationItem(BaseModel):
    """Free-form key/value row; blank rows are accepted here and dropped on save."""
    key: str = ""
    value: str = ""


def _strip_refs(v: Optional[List[str]]) -> Optional[List[str]]:
    if v is None:
        return None
    return [ref.strip() for ref in v if ref and ref.strip()]


class ProductBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    category: str = Field(..., min_length=1, max_length=255)
    description: str = ""
    image: Optional[str] = None
    images: Optional[List[str]] = None
    specifications: List[SpecificationItem] = []

    # --- Validators ---
    @field_validator("name", "category")
    @classmethod
    def _strip_nonempty(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be empty")
        return v

    @field_validator("image")
    @classmethod
    def _image_strip(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        return v or None

    @field_validator("images")
    @classmethod
    def _images_strip(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        return _strip_refs(v)

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "name": "DN50 Ball Valve",
                    "category": "Ball Valves",
                    "description": "Full bore, PN40",
                    "images": [
                        "https://drive.google.com/file/d/1AbC_dEf-123/view?usp=sharing",
                    ],
                    "specifications": [{"key": "Pressure", "value": "PN40"}],
                }
            ]
        }
    )


class ProductCreate(ProductBase):
    pass


class ProductUpdate(BaseModel):
    """Partial update; all fields optional."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    category: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    image: Optional[str] = None
    images: Optional[List[str]] = None
    specifications: Optional[List[SpecificationItem]] = None

    @field_validator("name", "category")
    @classmethod
    def _strip_nonempty(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("must not be empty")
        return v

    @field_validator("images")
    @classmethod
    def _images_strip(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        return _strip_refs(v)


class ProductRead(BaseModel):
    """Stored references as-is, plus display-ready URLs."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    category: str
    description: str = ""
    image: Optional[str] = None
    images: Optional[List[str]] = None
    specifications: List[SpecificationItem] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @computed_field  # type: ignore[misc]
    @property
    def image_url(self) -> Optional[str]:
        return resolve_image_url(self.images[0] if self.images else self.image)

    @computed_field  # type: ignore[misc]
    @property
    def gallery(self) -> List[str]:
        return product_gallery(self.image, self.images)


class ProductList(BaseModel):
    items: List[ProductRead]
    total: int
