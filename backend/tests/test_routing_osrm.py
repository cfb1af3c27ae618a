from __future__ import annotations

import asyncio
from typing import Any

import httpx
import pytest

from sidewalk_router.routing_osrm import OSRMClient, OSRMError, osrm_route_to_payload

ROUTE = {
    "distance": 512.5,
    "duration": 380.0,
    "geometry": {"type": "LineString", "coordinates": [[13.0, 52.0], [13.002, 52.001], [13.004, 52.0]]},
    "legs": [
        {
            "steps": [
                {"name": "Lindenstrasse", "distance": 300.0, "duration": 220.0, "maneuver": {"type": "depart"}},
                {"name": "", "distance": 212.5, "duration": 160.0, "maneuver": {"type": "arrive"}},
            ]
        }
    ],
}


def _client(handler) -> OSRMClient:
    return OSRMClient(base_url="http://osrm.test/", profile="foot", transport=httpx.MockTransport(handler))


def _fetch(client: OSRMClient, **kwargs: Any) -> dict[str, Any]:
    async def _run() -> dict[str, Any]:
        try:
            return await client.fetch_route(start_lat=52.0, start_lon=13.0, end_lat=52.0, end_lon=13.004, **kwargs)
        finally:
            await client.aclose()

    return asyncio.run(_run())


def test_fetch_route_builds_lon_lat_url_and_returns_first_route() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"code": "Ok", "routes": [ROUTE, {"distance": 1.0}]})

    route = _fetch(_client(handler))
    assert route["distance"] == 512.5
    assert seen[0].url.path == "/route/v1/foot/13.0,52.0;13.004,52.0"
    assert seen[0].url.params["geometries"] == "geojson"


def test_fetch_route_retries_transient_status() -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] == 1:
            return httpx.Response(503, json={"code": "Busy", "message": "try later"})
        return httpx.Response(200, json={"code": "Ok", "routes": [ROUTE]})

    route = _fetch(_client(handler), max_retries=2)
    assert calls["n"] == 2
    assert route["duration"] == 380.0


def test_fetch_route_fails_fast_on_client_error() -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(400, json={"code": "InvalidQuery", "message": "bad coordinates"})

    with pytest.raises(OSRMError, match="InvalidQuery"):
        _fetch(_client(handler), max_retries=3)
    assert calls["n"] == 1


def test_fetch_route_reports_status_for_non_json_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, text="<html>no such profile</html>")

    with pytest.raises(OSRMError, match="OSRM HTTP 404"):
        _fetch(_client(handler), max_retries=1)


def test_fetch_route_rejects_no_route_payload() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"code": "NoRoute", "message": "Impossible route"})

    with pytest.raises(OSRMError, match="NoRoute"):
        _fetch(_client(handler), max_retries=1)


def test_osrm_route_payload_flags_unverified_accessibility() -> None:
    payload = osrm_route_to_payload(ROUTE, profile="foot")
    assert payload["tier"] == "osrm_fallback"
    assert payload["polyline"] == [[52.0, 13.0], [52.001, 13.002], [52.0, 13.004]]
    assert payload["metrics"]["total_distance_m"] == 512.5
    assert payload["metrics"]["osrm_profile"] == "foot"
    assert payload["segments"] == []
    assert [step["instruction"] for step in payload["steps"]] == ["depart", "arrive"]
    assert payload["warnings"]
