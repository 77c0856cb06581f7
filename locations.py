import math
import re
from typing import Dict, List

from database import serialize

EARTH_RADIUS_KM = 6371
NEARBY_KM = 80
MAX_CENTERS = 30


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (math.sin(d_lat / 2) ** 2
         + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2)
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def classify_center(name: str, tags: List[str]) -> str:
    text = f"{name or ''} {' '.join(tags or [])}".lower()
    if re.search(r"abortion|planned parenthood|reproductive health", text):
        return "abortion"
    if re.search(r"women|woman|obgyn|gyne|female", text):
        return "women"
    if re.search(r"period|menstrual|feminine hygiene|sanitary|tampon|pad|donation", text):
        return "period"
    return "women"


def list_locations(db) -> List[Dict]:
    return [serialize(d) for d in db["location"].find({})]


def nearby_centers(db, lat: float, lng: float, radius_km: float = NEARBY_KM) -> List[Dict]:
    centers = []
    for c in db["location"].find({}):
        coords = c.get("coordinates") or {}
        try:
            plat, plng = float(coords["latitude"]), float(coords["longitude"])
        except (KeyError, TypeError, ValueError):
            continue
        distance = haversine_km(lat, lng, plat, plng)
        if distance > radius_km:
            continue
        address = c.get("address") or {}
        centers.append({
            "id": str(c["_id"]),
            "name": c.get("name") or "Health center",
            "address": ", ".join(p for p in (address.get("street"), address.get("city"), address.get("state")) if p),
            "lat": plat,
            "lng": plng,
            "type": classify_center(c.get("name"), c.get("accepted_items")),
            "distance_km": round(distance, 2),
        })
    centers.sort(key=lambda x: x["distance_km"])
    return centers[:MAX_CENTERS]
