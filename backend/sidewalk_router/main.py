from __future__ import annotations

import asyncio
import time
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Annotated, Any

import ijson
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .errors import EmptyDatasetError, GraphUnavailableError
from .logging_utils import log_event
from .models import GraphStatusResponse, WalkingRouteRequest, WalkingRouteResponse
from .route_cache import drop_stale_routes, get_cached_route, route_cache_key, route_cache_stats, set_cached_route
from .route_summary import summarize_route
from .router import AccessibleRouter, RouteFailure
from .routing_osrm import OSRMClient, OSRMError, osrm_route_to_payload
from .segments import GraphStore
from .settings import settings

_STATUS_BY_REASON: dict[str, int] = {
    "invalid_coordinate": 400,
    "no_network_nearby": 404,
    "no_accessible_route": 404,
    "empty_dataset": 503,
    "graph_unavailable": 503,
}


def _load_initial_graph(store: GraphStore) -> None:
    segments_path = Path(settings.segments_path)
    if not settings.load_segments_on_startup:
        return
    if not segments_path.is_file():
        log_event("segment_feed_missing", path=str(segments_path))
        return
    try:
        store.reload_from_feed(segments_path)
    except (EmptyDatasetError, ValueError, ijson.JSONError) as exc:
        # The service still starts; routes answer graph_unavailable until a reload succeeds.
        log_event("segment_feed_load_failed", path=str(segments_path), error=str(exc))


@asynccontextmanager
async def lifespan(app: FastAPI):
    store = GraphStore()
    await asyncio.to_thread(_load_initial_graph, store)
    app.state.graph_store = store
    app.state.router = AccessibleRouter(store)
    app.state.osrm = OSRMClient(
        base_url=settings.osrm_base_url,
        profile=settings.osrm_profile,
        timeout_s=settings.osrm_timeout_s,
    )
    yield
    await app.state.osrm.aclose()


app = FastAPI(title="Accessible Sidewalk Router", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


def graph_store(request: Request) -> GraphStore:
    store: GraphStore | None = getattr(request.app.state, "graph_store", None)  # type: ignore[attr-defined]
    if store is None:
        raise HTTPException(status_code=503, detail="graph store not initialised")
    return store


def accessible_router(request: Request) -> AccessibleRouter:
    router: AccessibleRouter | None = getattr(request.app.state, "router", None)  # type: ignore[attr-defined]
    if router is None:
        raise HTTPException(status_code=503, detail="router not initialised")
    return router


def osrm_client(request: Request) -> OSRMClient | None:
    # Fallback is optional; a missing client just disables it.
    return getattr(request.app.state, "osrm", None)  # type: ignore[attr-defined]


StoreDep = Annotated[GraphStore, Depends(graph_store)]
RouterDep = Annotated[AccessibleRouter, Depends(accessible_router)]
OSRMDep = Annotated[OSRMClient | None, Depends(osrm_client)]


@app.get("/")
async def root() -> dict[str, str]:
    return {"message": "Backend is running. Visit /docs for the API UI.", "docs": "/docs"}


@app.get("/health")
async def health(store: StoreDep) -> dict[str, Any]:
    return {"status": "ok", "graph_loaded": store.is_loaded(), "route_cache": route_cache_stats()}


@app.get("/graph/status", response_model=GraphStatusResponse)
async def graph_status(store: StoreDep) -> GraphStatusResponse:
    return GraphStatusResponse(**store.status())


@app.post("/graph/reload", response_model=GraphStatusResponse)
async def reload_graph(store: StoreDep) -> GraphStatusResponse:
    segments_path = Path(settings.segments_path)
    try:
        graph = await asyncio.to_thread(store.reload_from_feed, segments_path)
    except FileNotFoundError as e:
        raise HTTPException(status_code=404, detail=f"segment feed not found: {segments_path}") from e
    except EmptyDatasetError as e:
        raise HTTPException(status_code=422, detail={"error": e.reason_code, "message": str(e)}) from e
    except (ValueError, ijson.JSONError) as e:
        raise HTTPException(status_code=422, detail={"error": "invalid_feed", "message": str(e)}) from e
    dropped = drop_stale_routes(graph.version)
    log_event("route_cache_pruned", entries=dropped, graph_version=graph.version)
    return GraphStatusResponse(**store.status())


def _failure_response(failure: RouteFailure) -> JSONResponse:
    status = _STATUS_BY_REASON.get(failure.reason, 404)
    return JSONResponse(status_code=status, content={"error": failure.reason, **failure.to_dict()})


async def _osrm_fallback(
    req: WalkingRouteRequest,
    failure: RouteFailure,
    osrm: OSRMClient,
) -> dict[str, Any] | None:
    try:
        route = await osrm.fetch_route(
            start_lat=req.start.lat,
            start_lon=req.start.lon,
            end_lat=req.end.lat,
            end_lon=req.end.lon,
            max_retries=settings.osrm_max_retries,
        )
    except OSRMError as e:
        log_event("osrm_fallback_failed", attempted_tiers=list(failure.attempted_tiers), error=str(e))
        return None
    payload = osrm_route_to_payload(route, profile=osrm.profile)
    payload["attempted_tiers"] = list(failure.attempted_tiers)
    summary = summarize_route(payload, mobility=req.options.mobility)
    summary["warnings"] = [*payload.get("warnings", []), *summary["warnings"]]
    payload["summary"] = summary
    log_event(
        "osrm_fallback_used",
        attempted_tiers=list(failure.attempted_tiers),
        total_distance_m=payload["metrics"]["total_distance_m"],
    )
    return payload


@app.post("/routes/walking", response_model=WalkingRouteResponse)
async def walking_route(req: WalkingRouteRequest, router: RouterDep, osrm: OSRMDep):
    t0 = time.perf_counter()
    request_id = uuid.uuid4().hex[:12]

    cache_key: str | None = None
    try:
        graph_version = router.store.current().version
    except GraphUnavailableError:
        graph_version = None
    if graph_version is not None:
        cache_key = route_cache_key(graph_version=graph_version, request=req.model_dump(mode="json"))
        cached = get_cached_route(cache_key)
        if cached is not None:
            log_event("request_completed", request_id=request_id, cached=True, tier=cached.get("tier"))
            return WalkingRouteResponse(route=cached, routing_mode="accessible", cached=True)

    try:
        options = req.options.to_route_options()
        result = await asyncio.to_thread(router.route, req.start.as_point(), req.end.as_point(), options)
    except ValueError as e:
        # Malformed tier overrides: duplicate labels or a non-monotonic ordering.
        raise HTTPException(status_code=400, detail={"error": "invalid_tiers", "message": str(e)}) from e

    if isinstance(result, RouteFailure):
        if (
            result.reason == "no_accessible_route"
            and settings.osrm_fallback_enabled
            and req.options.allow_external_fallback
            and osrm is not None
        ):
            payload = await _osrm_fallback(req, result, osrm)
            if payload is not None:
                log_event(
                    "request_completed",
                    request_id=request_id,
                    tier=payload["tier"],
                    elapsed_ms=round((time.perf_counter() - t0) * 1000.0, 3),
                )
                return WalkingRouteResponse(route=payload, routing_mode="osrm_fallback")
        log_event(
            "request_completed",
            request_id=request_id,
            error=result.reason,
            elapsed_ms=round((time.perf_counter() - t0) * 1000.0, 3),
        )
        return _failure_response(result)

    payload = result.to_dict()
    payload["summary"] = summarize_route(payload, mobility=req.options.mobility)
    if cache_key is not None and result.graph_version == graph_version:
        set_cached_route(cache_key, payload, graph_version=graph_version)
    log_event(
        "request_completed",
        request_id=request_id,
        tier=result.tier,
        elapsed_ms=round((time.perf_counter() - t0) * 1000.0, 3),
    )
    return WalkingRouteResponse(route=payload, routing_mode="accessible")
