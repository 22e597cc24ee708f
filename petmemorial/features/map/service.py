"""Public map markers."""

from typing import List
from sqlalchemy import select

from petmemorial.core.database import get_db_session, map_markers, pets
from petmemorial.models.pet import MapMarkerView


def list_markers() -> List[MapMarkerView]:
    """Markers of public memorials only, oldest marker first."""
    query = (
        select(
            map_markers.c.id,
            map_markers.c.pet_id,
            map_markers.c.lat,
            map_markers.c.lng,
            map_markers.c.marker_style,
            pets.c.name,
            pets.c.epitaph,
            pets.c.birth_date,
            pets.c.death_date,
        )
        .select_from(map_markers.join(pets, pets.c.id == map_markers.c.pet_id))
        .where(pets.c.is_public.is_(True))
        .order_by(map_markers.c.id)
    )
    with get_db_session() as session:
        rows = session.execute(query).all()
        return [
            MapMarkerView(
                id=row.id,
                pet_id=row.pet_id,
                name=row.name,
                epitaph=row.epitaph,
                birth_date=row.birth_date,
                death_date=row.death_date,
                lat=row.lat,
                lng=row.lng,
                marker_style=row.marker_style,
            )
            for row in rows
        ]
