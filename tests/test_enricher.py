import pytest
import requests

from poi_catalog.core import enricher as enricher_mod
from poi_catalog.core.checkpoint import CheckpointStore
from poi_catalog.core.enricher import PlacesClient, PlacesEnricher, find_best_match, run_enrichment
from poi_catalog.core.models import CatalogRecord, Location, Media, Ratings
from poi_catalog.reconcile.geofence import Geofence
from poi_catalog.reconcile.merge import MergeEngine
from poi_catalog.vendors.google_places import GooglePlacesError


class NoWaitLimiter:
    def __init__(self):
        self.calls = 0

    def acquire(self):
        self.calls += 1
        return 0.0


class FakeClient:
    """Stands in for PlacesClient with canned search/details/photo answers."""

    def __init__(self, search_results=None, details=None, fail_ids=()):
        self.search_results = search_results or []
        self.details_by_id = details or {}
        self.fail_ids = set(fail_ids)
        self.searches = []
        self.detail_calls = []

    def search(self, query, location=None, radius=None, pagetoken=None):
        self.searches.append((query, location, radius))
        return {"status": "OK", "results": self.search_results}

    def details(self, place_id):
        self.detail_calls.append(place_id)
        if place_id in self.fail_ids:
            raise GooglePlacesError("UNKNOWN_ERROR", retryable=True)
        return self.details_by_id.get(place_id, {})

    def photo(self, photo_reference, max_width=1200):
        return f"https://lh3.googleusercontent.com/{photo_reference}"


def make_record(record_id, name="Rum Point Club", place_id=None, reviews=0, images=None):
    return CatalogRecord(
        id=record_id,
        name=name,
        category="restaurant",
        location=Location(
            district="North Side",
            island="Grand Cayman",
            latitude=19.37,
            longitude=-81.27,
            external_place_id=place_id,
        ),
        ratings=Ratings(review_count=reviews),
        media=Media(images=list(images or [])),
    )


def details_for(place_id, name="Rum Point Club"):
    return {
        "place_id": place_id,
        "name": name,
        "geometry": {"location": {"lat": 19.37, "lng": -81.27}},
        "rating": 4.5,
        "user_ratings_total": 321,
        "international_phone_number": "+1 345-947-9412",
        "opening_hours": {"weekday_text": ["Monday: 10 AM - 5 PM"]},
        "photos": [{"photo_reference": f"ref{i}"} for i in range(8)],
    }


def make_enricher(client, max_photos=5):
    engine = MergeEngine(Geofence(), clock=lambda: "2026-01-01T00:00:00Z")
    return PlacesEnricher(client, engine, default_phone_region="KY", max_photos=max_photos)


def test_find_best_match_weights_name_and_location():
    results = [
        {"place_id": "far", "name": "Rum Point Club", "geometry": {"location": {"lat": 19.30, "lng": -81.38}}},
        {"place_id": "near", "name": "Rum Point Club", "geometry": {"location": {"lat": 19.37, "lng": -81.27}}},
        {"place_id": "other", "name": "Kaibo", "geometry": {"location": {"lat": 19.37, "lng": -81.27}}},
    ]
    assert find_best_match("Rum Point Club", 19.37, -81.27, results)["place_id"] == "near"
    assert find_best_match("Starfish Point", 19.37, -81.27, results[2:]) is None
    assert find_best_match("Rum Point Club", None, None, results[:1])["place_id"] == "far"


def test_enrich_resolves_place_and_merges_details():
    client = FakeClient(
        search_results=[{"place_id": "ChIJrum", "name": "Rum Point Club", "geometry": {"location": {"lat": 19.37, "lng": -81.27}}}],
        details={"ChIJrum": details_for("ChIJrum")},
    )
    outcome = make_enricher(client).enrich(make_record("r1"))

    assert outcome.status == enricher_mod.STATUS_ENRICHED
    record = outcome.record
    assert record.location.external_place_id == "ChIJrum"
    assert record.ratings.review_count == 321
    assert record.contact.phone == "+13459479412"
    assert record.business.hours == {"weekdayText": ["Monday: 10 AM - 5 PM"]}
    assert len(record.media.images) == 5
    assert record.media.thumbnail == "https://lh3.googleusercontent.com/ref0"
    assert client.searches[0][1:] == ((19.37, -81.27), 500)


def test_enrich_skips_already_enriched_records():
    client = FakeClient()
    record = make_record("r1", reviews=10, images=["https://lh3.googleusercontent.com/x"])
    outcome = make_enricher(client).enrich(record)
    assert outcome.status == enricher_mod.STATUS_ALREADY_ENRICHED
    assert client.searches == [] and client.detail_calls == []


def test_enrich_not_found_and_failure_leave_record_unchanged():
    record = make_record("r1")
    not_found = make_enricher(FakeClient(search_results=[])).enrich(record)
    assert not_found.status == enricher_mod.STATUS_NOT_FOUND
    assert not_found.record is record

    failing = make_enricher(FakeClient(fail_ids={"ChIJbad"})).enrich(make_record("r2", place_id="ChIJbad"))
    assert failing.status == enricher_mod.STATUS_FAILED
    assert failing.record.ratings.review_count == 0


def test_places_client_retries_transient_errors(monkeypatch):
    attempts = []
    sleeps = []

    def flaky_details(place_id, api_key):
        attempts.append(place_id)
        if len(attempts) < 3:
            raise GooglePlacesError("OVER_QUERY_LIMIT", retryable=True)
        return {"name": "Rum Point Club"}

    monkeypatch.setattr(enricher_mod.google_places, "place_details", flaky_details)
    limiter = NoWaitLimiter()
    client = PlacesClient("key", limiter, max_retries=4, sleep=sleeps.append)

    assert client.details("ChIJrum") == {"name": "Rum Point Club"}
    assert sleeps == [1.0, 2.0]
    assert limiter.calls == 3


def test_places_client_gives_up(monkeypatch):
    sleeps = []

    def always_down(place_id, api_key):
        raise GooglePlacesError("UNKNOWN_ERROR", retryable=True)

    monkeypatch.setattr(enricher_mod.google_places, "place_details", always_down)
    client = PlacesClient("key", NoWaitLimiter(), max_retries=4, sleep=sleeps.append)

    with pytest.raises(GooglePlacesError):
        client.details("ChIJrum")
    assert sleeps == [1.0, 2.0, 5.0, 10.0]


def test_places_client_does_not_retry_permanent_errors(monkeypatch):
    sleeps = []

    def denied(place_id, api_key):
        raise GooglePlacesError("REQUEST_DENIED")

    monkeypatch.setattr(enricher_mod.google_places, "place_details", denied)
    client = PlacesClient("key", NoWaitLimiter(), sleep=sleeps.append)
    with pytest.raises(GooglePlacesError):
        client.details("ChIJrum")
    assert sleeps == []


def test_run_enrichment_checkpoints_and_resumes(tmp_path):
    records = [make_record(f"r{i}", place_id=f"p{i}") for i in range(5)]
    client = FakeClient(details={f"p{i}": details_for(f"p{i}") for i in range(5)})
    store = CheckpointStore(str(tmp_path / "checkpoint.json"))
    persisted = []

    updated, summary = run_enrichment(
        records,
        make_enricher(client),
        store=store,
        batch_size=2,
        limit=3,
        persist=lambda recs: persisted.append([r.ratings.review_count for r in recs]),
    )

    assert summary.counts["enriched"] == 3
    assert summary.completed is False
    assert client.detail_calls == ["p0", "p1", "p2"]
    assert persisted[0] == [321, 321, 0, 0, 0]
    assert store.load().processed_ids == {"r0", "r1", "r2"}

    client.detail_calls.clear()
    final, resumed = run_enrichment(updated, make_enricher(client), store=store, batch_size=2)

    assert client.detail_calls == ["p3", "p4"]
    assert resumed.counts["resumed"] == 3
    assert resumed.completed is True
    assert store.load() is None
    assert [r.ratings.review_count for r in final] == [321] * 5


def test_run_enrichment_records_failures(tmp_path):
    records = [make_record("r0", place_id="p0"), make_record("r1", place_id="bad")]
    client = FakeClient(details={"p0": details_for("p0")}, fail_ids={"bad"})
    _, summary = run_enrichment(records, make_enricher(client), batch_size=10)
    assert summary.counts["failed"] == 1
    assert summary.counts["enriched"] == 1
    assert summary.changes[0]["id"] == "r0"


def test_run_enrichment_counts_garbled_responses_as_failed(monkeypatch):
    class HtmlResponse:
        status_code = 200
        headers = {}

        def raise_for_status(self):
            pass

        def json(self):
            raise requests.exceptions.JSONDecodeError("Expecting value", "<html>", 0)

    class HtmlSession:
        def get(self, url, params=None, timeout=None, allow_redirects=True):
            return HtmlResponse()

    monkeypatch.setattr(enricher_mod.google_places, "_SESSION", HtmlSession())
    sleeps = []
    client = PlacesClient("key", NoWaitLimiter(), max_retries=1, sleep=sleeps.append)
    record = make_record("r0", place_id="p0")

    updated, summary = run_enrichment([record], make_enricher(client))

    assert summary.counts["failed"] == 1
    assert updated[0] is record
    assert sleeps == [1.0]
