import pytest

from locations import classify_center, haversine_km, nearby_centers


def test_haversine_known_distance():
    # New York to Los Angeles
    assert haversine_km(40.7128, -74.0060, 34.0522, -118.2437) == pytest.approx(3936, rel=0.01)
    assert haversine_km(10, 10, 10, 10) == 0


@pytest.mark.parametrize("name,tags,expected", [
    ("Planned Parenthood", [], "abortion"),
    ("Women's Health Clinic", [], "women"),
    ("Community Center", ["tampons"], "period"),
    ("Health Hub", [], "women"),
])
def test_classify_center(name, tags, expected):
    assert classify_center(name, tags) == expected


def test_nearby_sorted_and_skips_bad_coordinates(db):
    db["location"].insert_many([
        {"name": "Far", "coordinates": {"latitude": 40.9, "longitude": -74.0}},
        {"name": "Near", "coordinates": {"latitude": 40.72, "longitude": -74.0},
         "address": {"street": "5 Elm", "city": "NYC"}},
        {"name": "Broken", "coordinates": {}},
    ])
    centers = nearby_centers(db, 40.71, -74.0)
    assert [c["name"] for c in centers] == ["Near", "Far"]
    assert centers[0]["address"] == "5 Elm, NYC"
    assert centers[0]["distance_km"] < centers[1]["distance_km"]
