"""Client utilities for the Google Places API (legacy web service endpoints)."""

import logging
from typing import Any, Dict, Optional, Tuple

import requests

logger = logging.getLogger(__name__)
_SESSION = requests.Session()
_BASE_URL = "https://maps.googleapis.com/maps/api/place"
_TIMEOUT = 10

DETAIL_FIELDS = (
    "place_id,name,formatted_address,international_phone_number,formatted_phone_number,"
    "geometry,website,rating,user_ratings_total,types,opening_hours,photos,"
    "editorial_summary,price_level,business_status"
)
_OK_STATUSES = {"OK", "ZERO_RESULTS"}
_TRANSIENT_STATUSES = {"OVER_QUERY_LIMIT", "UNKNOWN_ERROR"}


class EnrichmentAPIError(RuntimeError):
    """Raised when the places service cannot satisfy a request.

    `retryable` marks failures worth another attempt after a backoff.
    """

    def __init__(self, message: str, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class GooglePlacesError(EnrichmentAPIError):
    """Raised when the Places API returns a non-successful response."""


def _get(endpoint: str, params: Dict[str, Any], allow_redirects: bool = True) -> requests.Response:
    try:
        response = _SESSION.get(
            f"{_BASE_URL}/{endpoint}",
            params=params,
            timeout=_TIMEOUT,
            allow_redirects=allow_redirects,
        )
    except (requests.ConnectionError, requests.Timeout) as exc:
        raise GooglePlacesError(f"{endpoint} request failed: {exc}", retryable=True) from exc
    except requests.RequestException as exc:
        raise GooglePlacesError(f"{endpoint} request failed: {exc}") from exc

    if response.status_code == 429 or response.status_code >= 500:
        raise GooglePlacesError(f"{endpoint} returned HTTP {response.status_code}", retryable=True)
    try:
        response.raise_for_status()
    except requests.HTTPError as exc:
        raise GooglePlacesError(f"{endpoint} returned HTTP {response.status_code}") from exc
    return response


def _json(endpoint: str, response: requests.Response) -> Dict[str, Any]:
    try:
        payload = response.json()
    except ValueError as exc:
        raise GooglePlacesError(f"{endpoint} returned a non-JSON body", retryable=True) from exc
    if not isinstance(payload, dict):
        raise GooglePlacesError(f"{endpoint} returned an unexpected payload", retryable=True)
    return payload


def _check_status(operation: str, payload: Dict[str, Any]) -> None:
    status = payload.get("status")
    if status in _OK_STATUSES:
        return
    logger.error("%s failed: status=%s, error_message=%s", operation, status, payload.get("error_message"))
    raise GooglePlacesError(payload.get("error_message") or str(status), retryable=status in _TRANSIENT_STATUSES)


def text_search(
    query: str,
    api_key: str,
    location: Optional[Tuple[float, float]] = None,
    radius: Optional[int] = None,
    pagetoken: Optional[str] = None,
) -> Dict[str, Any]:
    """Run one text search page; `location`/`radius` bias results toward a point."""
    params: Dict[str, Any] = {"query": query, "key": api_key}
    if location is not None:
        params["location"] = f"{location[0]},{location[1]}"
        if radius:
            params["radius"] = int(radius)
    if pagetoken:
        params["pagetoken"] = pagetoken
    payload = _json("textsearch/json", _get("textsearch/json", params))
    _check_status("text_search", payload)
    return payload


def place_details(place_id: str, api_key: str) -> Dict[str, Any]:
    params = {"place_id": place_id, "key": api_key, "fields": DETAIL_FIELDS}
    payload = _json("details/json", _get("details/json", params))
    _check_status("place_details", payload)
    return payload.get("result", {})


def photo_url(photo_reference: str, api_key: str, max_width: int = 1200) -> Optional[str]:
    """Resolve a photo reference to its public image URL.

    The photo endpoint answers with a redirect; only the redirect target is
    returned so the API key never ends up in the catalog.
    """
    params = {"photo_reference": photo_reference, "maxwidth": max_width, "key": api_key}
    response = _get("photo", params, allow_redirects=False)
    location = response.headers.get("Location")
    if not location:
        logger.warning("Photo %s did not resolve to an image URL (HTTP %s)", photo_reference[:12], response.status_code)
        return None
    return location
