"""Google Places routes (cached and metered)."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from core.container import container
from services.places import PlacesService

router = APIRouter(prefix="/api/places", tags=["places"])

LOCATION_PATTERN = r"^-?\d+\.?\d*,-?\d+\.?\d*$"


@router.get("/search")
async def search_places(
    query: str = Query(..., max_length=200),
    location: Optional[str] = Query(default=None, pattern=LOCATION_PATTERN,
                                    description="lat,lng e.g. 37.7749,-122.4194"),
    radius: int = Query(default=5000, ge=0, le=50000),
    max_results: int = Query(default=5, ge=1, le=20, alias="maxResults"),
    places_service: PlacesService = Depends(lambda: container.places_service())
):
    """Text search for places, served from cache when possible."""
    if not query.strip():
        raise HTTPException(status_code=400, detail="Query parameter is required")
    return await places_service.search(query, location=location, radius=radius, max_results=max_results)


@router.get("/details/{place_id}")
async def place_details(
    place_id: str,
    places_service: PlacesService = Depends(lambda: container.places_service())
):
    """Details for a single place, served from cache when possible."""
    return await places_service.details(place_id)
