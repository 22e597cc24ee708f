"""
Pet memorial models: the pet record, its scene configuration,
its optional map marker, and request payloads for create/update.
"""

from datetime import date, datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from petmemorial.models.gift import GiftPlacement
from petmemorial.models.user import OwnerSummary


class MemorialScene(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    environment_id: Optional[str] = None
    house_id: Optional[str] = None
    scene_json: Optional[Dict[str, Any]] = None


class MarkerInfo(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    id: int
    lat: float
    lng: float
    marker_style: Optional[str] = None


class Pet(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    id: str
    owner_id: str
    name: str
    species: Optional[str] = None
    birth_date: Optional[date] = None
    death_date: Optional[date] = None
    epitaph: Optional[str] = None
    favorite_treats: Optional[str] = None
    favorite_toys: Optional[str] = None
    favorite_sleep_places: Optional[str] = None
    story: Optional[str] = None
    is_public: bool = False
    created_at: datetime
    updated_at: datetime
    memorial: Optional[MemorialScene] = None
    marker: Optional[MarkerInfo] = None


class PetDetail(Pet):
    owner: OwnerSummary
    gifts: List[GiftPlacement] = Field(default_factory=list, description="Newest first")


class MapMarkerView(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    id: int
    pet_id: str
    name: str
    epitaph: Optional[str] = None
    birth_date: Optional[date] = None
    death_date: Optional[date] = None
    lat: float
    lng: float
    marker_style: Optional[str] = None


class PetUpdateRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=80)
    species: Optional[str] = Field(default=None, min_length=1, max_length=40)
    birth_date: Optional[date] = None
    death_date: Optional[date] = None
    epitaph: Optional[str] = Field(default=None, min_length=1, max_length=200)
    favorite_treats: Optional[str] = Field(default=None, min_length=1, max_length=200)
    favorite_toys: Optional[str] = Field(default=None, min_length=1, max_length=200)
    favorite_sleep_places: Optional[str] = Field(default=None, min_length=1, max_length=200)
    story: Optional[str] = Field(default=None, min_length=1, max_length=2000)
    is_public: Optional[bool] = None


class PetCreateRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    owner_id: str = Field(min_length=1, max_length=200)
    name: str = Field(min_length=1, max_length=80)
    species: Optional[str] = Field(default=None, min_length=1, max_length=40)
    birth_date: Optional[date] = None
    death_date: Optional[date] = None
    epitaph: Optional[str] = Field(default=None, min_length=1, max_length=200)
    favorite_treats: Optional[str] = Field(default=None, min_length=1, max_length=200)
    favorite_toys: Optional[str] = Field(default=None, min_length=1, max_length=200)
    favorite_sleep_places: Optional[str] = Field(default=None, min_length=1, max_length=200)
    story: Optional[str] = Field(default=None, min_length=1, max_length=2000)
    is_public: bool = False
    lat: Optional[float] = Field(default=None, ge=-90, le=90)
    lng: Optional[float] = Field(default=None, ge=-180, le=180)
    marker_style: Optional[str] = Field(default=None, min_length=1, max_length=50)
    environment_id: Optional[str] = Field(default=None, min_length=1, max_length=80)
    house_id: Optional[str] = Field(default=None, min_length=1, max_length=80)
    scene_json: Optional[Dict[str, Any]] = None

    @field_validator("owner_id")
    @classmethod
    def _trim(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("ownerId must not be blank")
        return value

    @model_validator(mode="after")
    def _dates_in_order(self):
        if self.birth_date and self.death_date and self.death_date < self.birth_date:
            raise ValueError("deathDate must not precede birthDate")
        return self

    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lng is not None
