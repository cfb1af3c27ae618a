from __future__ import annotations

import asyncio
from typing import Any, Final

import httpx


class OSRMError(RuntimeError):
    pass


class OSRMRetryableError(OSRMError):
    """Timeouts, throttling and 5xx answers; retried with backoff."""


_RETRYABLE_STATUS: Final[set[int]] = {408, 425, 429, 500, 502, 503, 504}


def _osrm_error_message(resp: httpx.Response) -> str:
    # OSRM answers errors with {"code", "message"}; proxies in front of it may not.
    try:
        data = resp.json()
    except ValueError:
        data = None
    if isinstance(data, dict) and data.get("code"):
        message = data.get("message")
        return f"OSRM {resp.status_code} {data['code']}: {message}" if message else f"OSRM {resp.status_code} {data['code']}"
    return f"OSRM HTTP {resp.status_code}"


class OSRMClient:
    """Plain pedestrian routing from an OSRM-style service, used when no accessible route exists."""

    def __init__(
        self,
        *,
        base_url: str,
        profile: str = "foot",
        timeout_s: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.profile = profile
        # trust_env=False keeps proxy env vars from rerouting requests.
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_s, connect=min(5.0, timeout_s)),
            trust_env=False,
            headers={"accept": "application/json", "user-agent": "sidewalk-router/0.1"},
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def fetch_route(
        self,
        *,
        start_lat: float,
        start_lon: float,
        end_lat: float,
        end_lon: float,
        max_retries: int = 3,
    ) -> dict[str, Any]:
        """Fetch the first OSRM route between two points (GeoJSON geometry, steps included)."""
        coords = f"{start_lon},{start_lat};{end_lon},{end_lat}"
        url = f"{self.base_url}/route/v1/{self.profile}/{coords}"
        params = {
            "overview": "full",
            "geometries": "geojson",
            "steps": "true",
        }
        max_retries_i = max(1, int(max_retries))
        last_err: Exception | None = None

        for attempt in range(max_retries_i):
            try:
                resp = await self._client.get(url, params=params)

                # Other 4xx mean a bad request; retrying will not change the answer.
                if 400 <= resp.status_code < 500 and resp.status_code not in _RETRYABLE_STATUS:
                    raise OSRMError(_osrm_error_message(resp))

                if resp.status_code in _RETRYABLE_STATUS:
                    raise OSRMRetryableError(_osrm_error_message(resp))

                resp.raise_for_status()
                data = resp.json()

                if data.get("code") != "Ok":
                    raise OSRMError(f"OSRM error code={data.get('code')} message={data.get('message')}")

                routes = data.get("routes", [])
                if not isinstance(routes, list) or not routes:
                    raise OSRMError("OSRM returned no routes")

                return routes[0]

            except OSRMRetryableError as e:
                last_err = e
            except (httpx.TimeoutException, httpx.NetworkError, httpx.TransportError) as e:
                last_err = e
            except httpx.HTTPStatusError as e:
                last_err = e
                raise OSRMError(str(e)) from e

            if attempt < max_retries_i - 1:
                await asyncio.sleep(min(0.25 * (2**attempt), 2.0))

        # httpx exceptions can stringify to "" (e.g. some timeouts), so include the type.
        if last_err is None:
            detail = "unknown error"
        else:
            msg = str(last_err).strip()
            detail = f"{type(last_err).__name__}: {msg}" if msg else f"{type(last_err).__name__}: {last_err!r}"
        raise OSRMError(f"OSRM request failed after {max_retries_i} retries (base={self.base_url}): {detail}")


def osrm_route_to_payload(route: dict[str, Any], *, profile: str) -> dict[str, Any]:
    """Shape an OSRM route like a walking route response, flagged as unverified for accessibility."""
    geometry = route.get("geometry") or {"type": "LineString", "coordinates": []}
    coordinates = geometry.get("coordinates", []) if isinstance(geometry, dict) else []
    polyline = [[float(lat), float(lon)] for lon, lat in coordinates]
    steps: list[dict[str, Any]] = []
    for leg in route.get("legs", []) or []:
        for step in (leg or {}).get("steps", []) or []:
            maneuver = step.get("maneuver") or {}
            steps.append(
                {
                    "name": step.get("name") or "",
                    "distance_m": float(step.get("distance", 0.0) or 0.0),
                    "duration_s": float(step.get("duration", 0.0) or 0.0),
                    "instruction": maneuver.get("instruction") or maneuver.get("type") or "Continue",
                }
            )
    return {
        "success": True,
        "tier": "osrm_fallback",
        "polyline": polyline,
        "geometry": {"type": "LineString", "coordinates": coordinates},
        "segments": [],
        "steps": steps,
        "metrics": {
            "total_distance_m": float(route.get("distance", 0.0) or 0.0),
            "total_duration_s": float(route.get("duration", 0.0) or 0.0),
            "average_accessibility_score": 0.0,
            "accessible_segment_ratio": 0.0,
            "segment_count": 0,
            "osrm_profile": profile,
        },
        "warnings": [
            "Accessibility tags unavailable for portions of this route; inspect conditions on arrival.",
        ],
    }
