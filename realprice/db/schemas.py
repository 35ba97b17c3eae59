"""Input schemas for mutations."""

from typing import Optional

from pydantic import BaseModel, Field

from realprice.config import settings


class AdvertisementCreate(BaseModel):
    """A new product listing."""

    name: str = Field(min_length=3)
    description: Optional[str] = None
    price: float = Field(gt=0)
    category: str
    image_url: Optional[str] = None
    stock: Optional[int] = Field(default=None, ge=0)
    validity_days: int = Field(default_factory=lambda: settings.default_validity_days, ge=1)
    data_ai_hint: Optional[str] = None


class AdvertisementUpdate(BaseModel):
    """Changes to an unarchived listing. Unset fields are left untouched."""

    name: Optional[str] = Field(default=None, min_length=3)
    description: Optional[str] = None
    price: Optional[float] = Field(default=None, gt=0)
    category: Optional[str] = None
    image_url: Optional[str] = None
    stock: Optional[int] = Field(default=None, ge=0)
    validity_days: Optional[int] = Field(default=None, ge=1)


class StoreCreate(BaseModel):
    """Store registration data."""

    name: str = Field(min_length=2)
    address: str = Field(min_length=5)
    city: str = Field(min_length=2)
    state: str = Field(min_length=2)
    zip_code: str = Field(min_length=5, max_length=10)
    email: str = Field(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    phone: str = Field(min_length=10)
    category: str
    description: Optional[str] = None
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)


class StoreUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2)
    address: Optional[str] = Field(default=None, min_length=5)
    city: Optional[str] = Field(default=None, min_length=2)
    state: Optional[str] = Field(default=None, min_length=2)
    zip_code: Optional[str] = Field(default=None, min_length=5, max_length=10)
    email: Optional[str] = Field(default=None, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    phone: Optional[str] = Field(default=None, min_length=10)
    category: Optional[str] = None
    description: Optional[str] = None
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)


class CanonicalProductCreate(BaseModel):
    """Catalog entry created by an administrator."""

    name: str = Field(min_length=2)
    category: str
    description: Optional[str] = None
    default_image_url: Optional[str] = None
