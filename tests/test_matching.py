import pytest

from poi_catalog.core.models import CatalogRecord, Location, ScrapedCandidate
from poi_catalog.reconcile import matching


def make_record(record_id, name, lat=None, lng=None, place_id=None):
    return CatalogRecord(
        id=record_id,
        name=name,
        category="beach",
        location=Location(latitude=lat, longitude=lng, external_place_id=place_id),
    )


def test_similarity_bounds_and_symmetry():
    assert matching.similarity("", "") == 1.0
    assert matching.similarity("Rum Point", "rum point") == 1.0
    assert matching.similarity("abc", "") == 0.0
    for a, b in [("Seven Mile Beach", "7 Mile Beach"), ("Kaibo", "Kaibo Beach Bar"), ("x", "yz")]:
        assert matching.similarity(a, b) == matching.similarity(b, a)


def test_similarity_value():
    assert matching.similarity("Seven Mile Beach", "7 Mile Beach") == pytest.approx(1 - 5 / 16)


def test_haversine_meters():
    assert matching.haversine_meters(19.335, -81.385, 19.335, -81.385) == 0
    distance = matching.haversine_meters(19.335, -81.385, 19.33513, -81.385)
    assert 13 < distance < 16


def test_near_identical_names_nearby_merge_via_proximity():
    resolver = matching.DuplicateResolver()
    existing = [make_record("beac-smb", "Seven Mile Beach", 19.335, -81.385)]
    candidate = ScrapedCandidate(name="7 Mile Beach", latitude=19.33513, longitude=-81.385)

    evidence = resolver.find_match(candidate, existing)

    assert evidence is not None
    assert evidence.rule == matching.RULE_PROXIMITY
    assert evidence.record_id == "beac-smb"
    assert evidence.distance_meters < 100


def test_name_rule_ignores_distance():
    resolver = matching.DuplicateResolver()
    existing = [make_record("a", "Rum Point Club", 19.36, -81.26)]
    candidate = ScrapedCandidate(name="Rum Point Club", latitude=19.30, longitude=-81.38)
    assert resolver.find_match(candidate, existing).rule == matching.RULE_NAME


def test_external_id_wins_regardless_of_name():
    resolver = matching.DuplicateResolver()
    existing = [make_record("a", "Totally Different", place_id="ChIJ1")]
    candidate = ScrapedCandidate(name="Kaibo", external_place_id="ChIJ1")
    assert resolver.find_match(candidate, existing).rule == matching.RULE_EXTERNAL_ID


def test_different_external_ids_never_match():
    resolver = matching.DuplicateResolver()
    existing = [make_record("a", "Starbucks", 19.335, -81.385, place_id="ChIJ1")]
    candidate = ScrapedCandidate(name="Starbucks", latitude=19.335, longitude=-81.385, external_place_id="ChIJ2")
    assert resolver.find_match(candidate, existing) is None


def test_first_matching_record_wins():
    resolver = matching.DuplicateResolver()
    existing = [make_record("first", "Rum Point"), make_record("second", "Rum Point")]
    assert resolver.find_match(ScrapedCandidate(name="Rum Point"), existing).record_id == "first"


def test_dissimilar_nearby_places_do_not_match():
    resolver = matching.DuplicateResolver()
    existing = [make_record("a", "Kaibo Beach Bar", 19.36, -81.26)]
    candidate = ScrapedCandidate(name="Rum Point Club", latitude=19.36, longitude=-81.26)
    assert resolver.find_match(candidate, existing) is None


def test_resolver_validates_thresholds():
    with pytest.raises(ValueError):
        matching.DuplicateResolver(similarity_threshold=1.5)
    with pytest.raises(ValueError):
        matching.DuplicateResolver(proximity_meters=-1)
