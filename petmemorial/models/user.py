from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class User(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    user_id: str = Field(serialization_alias="id")
    email: str
    login: Optional[str] = None
    coin_balance: int = 0
    created_at: datetime


class OwnerSummary(BaseModel):
    """Public owner fields embedded in pets and gift placements."""
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    id: str
    email: str
    login: Optional[str] = None


class WalletBalance(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    owner_id: str
    coin_balance: int


class TopUpRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    owner_id: str = Field(min_length=1, max_length=200)
    amount: int = Field(ge=1)

    @field_validator("owner_id")
    @classmethod
    def _trim(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("ownerId must not be blank")
        return value


class UserUpdateRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    login: Optional[str] = Field(default=None, min_length=3, max_length=20, pattern=r"^[a-z0-9._]+$")
    email: Optional[str] = Field(default=None, max_length=200, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
