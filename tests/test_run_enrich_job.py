import json
from pathlib import Path

import pytest

from poi_catalog.core.config import Settings
from poi_catalog.jobs import run_enrich
from poi_catalog.vendors import google_places

CATALOG = [
    {
        "id": "bar-kaibo",
        "name": "Kaibo Beach Bar",
        "category": "bar",
        "location": {"district": "North Side", "island": "Grand Cayman", "latitude": 19.36, "longitude": -81.26},
    },
    {
        "id": "hist-pedro",
        "name": "Pedro St. James",
        "category": "history",
        "isCurated": True,
        "description": "Restored 1780 great house.",
        "location": {
            "district": "Grand Cayman",
            "island": "Grand Cayman",
            "latitude": 19.2707,
            "longitude": -81.2866,
            "externalPlaceId": "ChIJpedro",
        },
        "ratings": {"overall": 4.8, "reviewCount": 1500},
        "media": {"thumbnail": "https://cdn.example.com/pedro.jpg", "images": ["https://cdn.example.com/pedro.jpg"]},
    },
]


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    catalog = tmp_path / "catalog.json"
    catalog.write_text(json.dumps(CATALOG), encoding="utf-8")
    settings = Settings(
        google_api_key="test-key",
        catalog_path=str(catalog),
        backup_dir=str(tmp_path / "backups"),
        checkpoint_path=str(tmp_path / "checkpoint.json"),
        requests_per_second=1000.0,
    )

    calls = []

    def fake_text_search(query, api_key, location=None, radius=None, pagetoken=None):
        calls.append(("search", query))
        return {
            "status": "OK",
            "results": [
                {"place_id": "ChIJkaibo", "name": "Kaibo Beach Bar", "geometry": {"location": {"lat": 19.36, "lng": -81.26}}}
            ],
        }

    def fake_place_details(place_id, api_key):
        calls.append(("details", place_id))
        return {
            "place_id": place_id,
            "name": "Kaibo Beach Bar",
            "rating": 4.4,
            "user_ratings_total": 900,
            "website": "https://kaibo.ky",
            "photos": [{"photo_reference": "abc"}],
        }

    def fake_photo_url(photo_reference, api_key, max_width=1200):
        return f"https://lh3.googleusercontent.com/{photo_reference}"


    monkeypatch.setattr(google_places, "text_search", fake_text_search)
    monkeypatch.setattr(google_places, "place_details", fake_place_details)
    monkeypatch.setattr(google_places, "photo_url", fake_photo_url)
    return tmp_path, catalog, settings, calls


def test_enrich_job_updates_catalog_and_clears_checkpoint(workspace):
    tmp_path, catalog, settings, calls = workspace

    report = run_enrich.run_enrich_job(catalog_path=str(catalog), settings=settings, clock=lambda: "2026-01-01T00:00:00Z")

    assert calls == [("search", "Kaibo Beach Bar Grand Cayman"), ("details", "ChIJkaibo")]
    assert report.enrichment["enriched"] == 1
    assert report.enrichment["already_enriched"] == 1
    assert report.enrichment["completed"] is True

    written = json.loads(catalog.read_text(encoding="utf-8"))
    kaibo = written[0]
    assert kaibo["location"]["externalPlaceId"] == "ChIJkaibo"
    assert kaibo["ratings"]["reviewCount"] == 900
    assert kaibo["media"]["images"] == ["https://lh3.googleusercontent.com/abc"]
    assert "test-key" not in catalog.read_text(encoding="utf-8")
    assert written[1]["description"] == "Restored 1780 great house."
    assert not (tmp_path / "checkpoint.json").exists()
    assert len(list((tmp_path / "backups").iterdir())) == 1
    assert (tmp_path / "catalog.report.json").exists()


def test_enrich_job_dry_run_writes_nothing(workspace):
    tmp_path, catalog, settings, _ = workspace
    before = catalog.read_bytes()

    report = run_enrich.run_enrich_job(catalog_path=str(catalog), settings=settings, dry_run=True)

    assert report.enrichment["enriched"] == 1
    assert catalog.read_bytes() == before
    assert sorted(p.name for p in tmp_path.iterdir()) == ["catalog.json"]


def test_main_requires_api_key(workspace, monkeypatch):
    _, catalog, settings, _ = workspace
    no_key = Settings(google_api_key="", catalog_path=settings.catalog_path, backup_dir=settings.backup_dir)
    monkeypatch.setattr(run_enrich, "get_settings", lambda: no_key)
    assert run_enrich.main([]) == 2


def test_main_missing_catalog(workspace, monkeypatch):
    tmp_path, _, settings, _ = workspace
    monkeypatch.setattr(run_enrich, "get_settings", lambda: settings)
    assert run_enrich.main(["--catalog", str(tmp_path / "nope.json")]) == 1


def _place(index, category="bar"):
    return {
        "id": f"{category}-place-{index}",
        "name": f"Place {index}",
        "category": category,
        "location": {
            "district": "North Side",
            "island": "Grand Cayman",
            "latitude": 19.36,
            "longitude": -81.26,
            "externalPlaceId": f"ChIJplace{index}",
        },
    }


def _review_counts(path):
    return [(r.get("ratings") or {}).get("reviewCount", 0) for r in json.loads(path.read_text(encoding="utf-8"))]


def test_resume_into_separate_output_keeps_finished_records(workspace):
    tmp_path, catalog, settings, _ = workspace
    catalog.write_text(json.dumps([_place(i) for i in range(4)]), encoding="utf-8")
    output = tmp_path / "enriched.json"

    first = run_enrich.run_enrich_job(
        catalog_path=str(catalog), output_path=str(output), limit=2, batch_size=1, settings=settings
    )
    assert first.enrichment["completed"] is False
    assert _review_counts(output) == [900, 900, 0, 0]

    second = run_enrich.run_enrich_job(
        catalog_path=str(catalog), output_path=str(output), batch_size=1, settings=settings
    )

    assert second.enrichment["resumed"] == 2
    assert second.enrichment["enriched"] == 2
    assert _review_counts(output) == [900, 900, 900, 900]
    assert not (tmp_path / "checkpoint.json").exists()


def test_category_filter_skips_other_records_without_using_the_limit(workspace):
    tmp_path, catalog, settings, calls = workspace
    places = [_place(0, "restaurant"), _place(1), _place(2, "restaurant")]
    catalog.write_text(json.dumps(places), encoding="utf-8")

    report = run_enrich.run_enrich_job(
        catalog_path=str(catalog), category="Restaurant", limit=2, settings=settings
    )

    assert calls == [("details", "ChIJplace0"), ("details", "ChIJplace2")]
    assert report.enrichment["filtered"] == 1
    assert report.enrichment["enriched"] == 2
    assert report.enrichment["completed"] is True
    assert _review_counts(catalog) == [900, 0, 900]


def test_existing_separate_output_is_backed_up(workspace):
    tmp_path, catalog, settings, _ = workspace
    output = tmp_path / "published.json"
    output.write_text("[]", encoding="utf-8")

    report = run_enrich.run_enrich_job(catalog_path=str(catalog), output_path=str(output), settings=settings)

    backups = sorted(p.name for p in (tmp_path / "backups").iterdir())
    assert len(backups) == 2
    assert report.output_backup_path is not None
    assert Path(report.output_backup_path).read_text(encoding="utf-8") == "[]"


def test_main_passes_category(workspace, monkeypatch):
    _, catalog, settings, calls = workspace
    monkeypatch.setattr(run_enrich, "get_settings", lambda: settings)
    assert run_enrich.main(["--catalog", str(catalog), "--category", "history"]) == 0
    assert calls == []
