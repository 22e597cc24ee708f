from typing import Dict

from fastapi import APIRouter

from petmemorial.features.users.service import get_or_create_user, update_profile
from petmemorial.models.user import UserUpdateRequest

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/{user_id}")
def get_profile(user_id: str) -> Dict:
    """Profile for an owner id; unknown ids are provisioned."""
    return get_or_create_user(user_id).model_dump(by_alias=True, mode="json")


@router.patch("/{user_id}")
def update_profile_endpoint(user_id: str, body: UserUpdateRequest) -> Dict:
    user = update_profile(user_id, login=body.login, email=body.email)
    return user.model_dump(by_alias=True, mode="json")
