from typing import Dict, List

from fastapi import APIRouter

from petmemorial.features.map.service import list_markers

router = APIRouter(prefix="/map", tags=["map"])


@router.get("/markers")
def get_markers() -> List[Dict]:
    """Markers of public memorials."""
    return [marker.model_dump(by_alias=True, mode="json") for marker in list_markers()]
