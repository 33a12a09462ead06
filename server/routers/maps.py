"""Google Maps URL routes (no upstream calls, not metered)."""

from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Query

from core.config import Settings
from core.container import container
from services.exceptions import MissingApiKeyError

router = APIRouter(prefix="/api/maps", tags=["maps"])

TRAVEL_MODES = ("driving", "walking", "bicycling", "transit")


@router.get("/embed")
async def embed(
    lat: Optional[float] = Query(default=None, ge=-90, le=90),
    lng: Optional[float] = Query(default=None, ge=-180, le=180),
    zoom: int = Query(default=15, ge=0, le=21),
    place_id: Optional[str] = None,
    settings: Settings = Depends(lambda: container.settings())
):
    """Embeddable map URL for a place id or a lat/lng view."""
    api_key = settings.google_maps_api_key
    if not api_key:
        raise MissingApiKeyError("Google Maps", "GOOGLE_MAPS_API_KEY")

    if place_id:
        return {
            "status": "success",
            "embed_url": f"https://www.google.com/maps/embed/v1/place?key={api_key}&q=place_id:{place_id}",
            "maps_url": f"https://www.google.com/maps/place/?q=place_id:{place_id}",
        }
    if lat is not None and lng is not None:
        return {
            "status": "success",
            "embed_url": f"https://www.google.com/maps/embed/v1/view?key={api_key}&center={lat},{lng}&zoom={zoom}",
            "maps_url": f"https://www.google.com/maps/@{lat},{lng},{zoom}z",
        }
    raise HTTPException(status_code=400, detail="Either place_id or lat/lng must be provided")


@router.get("/directions")
async def directions(
    origin: str = Query(..., min_length=1),
    destination: str = Query(..., min_length=1),
    mode: str = Query(default="driving")
):
    """Google Maps directions link between two free-text locations."""
    if mode not in TRAVEL_MODES:
        raise HTTPException(status_code=400, detail=f"mode must be one of {', '.join(TRAVEL_MODES)}")
    url = (
        "https://www.google.com/maps/dir/?api=1"
        f"&origin={quote(origin, safe='')}&destination={quote(destination, safe='')}&travelmode={mode}"
    )
    return {"status": "success", "directions_url": url}
