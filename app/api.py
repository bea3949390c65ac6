"""HTTP route definitions for the service."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.schemas import (
    DashboardResponse,
    Extrema,
    ExtremaResponse,
    ForecastResponse,
    Point,
    RangeInfo,
    SeriesResponse,
    ViewportRequest,
    ViewportResponse,
    duration_seconds,
)
from models.ranges import RangeKey
from services.dashboard import DashboardService, build_default_dashboard
from services.errors import PipelineError
from services.pipeline_config import PRESSURE

router = APIRouter()


def get_dashboard() -> DashboardService:
    return build_default_dashboard()


def _upstream_error(exc: PipelineError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))


def _superseded() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail="Request was superseded by a newer one.",
    )


def _check_metric(dashboard: DashboardService, metric: str) -> None:
    if metric not in dashboard.metric_names():
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown metric {metric!r}.",
        )


@router.get(
    "/ranges",
    response_model=list[RangeInfo],
    summary="List display horizons and whether they are cached.",
)
async def list_ranges(
    dashboard: DashboardService = Depends(get_dashboard),
) -> list[RangeInfo]:
    infos = []
    for key in RangeKey:
        entry = dashboard.cache.get_entry(key)
        infos.append(
            RangeInfo(
                range_key=key,
                duration_seconds=duration_seconds(key.duration),
                parent=key.parent,
                cached=entry is not None,
                fetched_at=entry.fetched_at if entry else None,
            )
        )
    return infos


@router.get(
    "/series/{range_key}",
    response_model=SeriesResponse,
    summary="Cleaned series of one metric for a horizon.",
)
async def get_series(
    range_key: RangeKey,
    metric: str = Query(PRESSURE),
    dashboard: DashboardService = Depends(get_dashboard),
) -> SeriesResponse:
    _check_metric(dashboard, metric)
    try:
        series = await dashboard.series(range_key, metric)
    except PipelineError as exc:
        raise _upstream_error(exc) from exc
    return SeriesResponse.build(range_key, metric, series)


@router.get(
    "/extrema/{range_key}",
    response_model=ExtremaResponse,
    summary="Minimum and maximum of a metric inside a time window.",
)
async def get_extrema(
    range_key: RangeKey,
    start: datetime,
    end: datetime,
    metric: str = Query(PRESSURE),
    dashboard: DashboardService = Depends(get_dashboard),
) -> ExtremaResponse:
    _check_metric(dashboard, metric)
    try:
        window = await dashboard.extrema(range_key, metric, start, end)
    except PipelineError as exc:
        raise _upstream_error(exc) from exc
    return ExtremaResponse(
        range_key=range_key,
        metric=metric,
        start=start,
        end=end,
        extrema=Extrema.from_window(window),
    )


@router.post(
    "/viewport",
    response_model=ViewportResponse,
    summary="Publish a pan/zoom change and return the window extrema.",
)
async def post_viewport(
    request: ViewportRequest,
    dashboard: DashboardService = Depends(get_dashboard),
) -> ViewportResponse:
    try:
        result = await dashboard.change_viewport(request.range_key, request.start, request.end)
    except PipelineError as exc:
        raise _upstream_error(exc) from exc
    if result is None:
        raise _superseded()
    return ViewportResponse(
        generation=result.change.generation,
        range_key=result.change.range_key,
        start=result.change.start,
        end=result.change.end,
        extrema={metric: Extrema.from_window(window) for metric, window in result.extrema.items()},
    )


@router.get(
    "/dashboard/{range_key}",
    response_model=DashboardResponse,
    summary="Run the full pipeline for a horizon.",
)
async def get_dashboard_snapshot(
    range_key: RangeKey,
    dashboard: DashboardService = Depends(get_dashboard),
) -> DashboardResponse:
    try:
        snapshot = await dashboard.refresh(range_key)
    except PipelineError as exc:
        raise _upstream_error(exc) from exc
    if snapshot is None:
        raise _superseded()
    return DashboardResponse(
        generation=snapshot.generation,
        range_key=snapshot.range_key,
        computed_at=snapshot.computed_at,
        series={
            metric: [Point.from_sample(sample) for sample in values]
            for metric, values in snapshot.series.items()
        },
        extrema={metric: Extrema.from_window(window) for metric, window in snapshot.extrema.items()},
        forecast=ForecastResponse.from_result(snapshot.forecast),
    )


@router.get(
    "/forecast",
    response_model=ForecastResponse,
    summary="Current pressure-tendency nowcast.",
)
async def get_forecast(
    dashboard: DashboardService = Depends(get_dashboard),
) -> ForecastResponse:
    try:
        result = await dashboard.nowcast()
    except PipelineError as exc:
        raise _upstream_error(exc) from exc
    return ForecastResponse.from_result(result)


@router.post(
    "/reload",
    status_code=status.HTTP_202_ACCEPTED,
    summary="Discard every cached horizon.",
)
async def reload_cache(
    dashboard: DashboardService = Depends(get_dashboard),
) -> dict[str, str]:
    dashboard.reload()
    return {"status": "reloading"}


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root(
    dashboard: DashboardService = Depends(get_dashboard),
) -> dict[str, Optional[str]]:
    snapshot = dashboard.snapshot
    return {
        "status": "ok",
        "active_range": dashboard.active_range.value,
        "last_refresh": snapshot.computed_at.isoformat() if snapshot else None,
    }
