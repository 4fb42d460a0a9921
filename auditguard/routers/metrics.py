"""
Metric ingestion and query router.

Wired to:
- MetricSampler for recording samples and windowed aggregates
"""

import asyncio
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from auditguard.container import Services
from auditguard.models.enums import Aggregation, Interval
from auditguard.utils.logging import get_logger

from .dependencies import get_services

logger = get_logger(__name__)
router = APIRouter()


class RecordMetricRequest(BaseModel):
    """Record metric request."""

    name: str = Field(..., min_length=1, description="Metric name")
    value: float = Field(..., description="Sample value")
    labels: dict[str, str] = Field(default_factory=dict, description="Sample labels")


@router.post("/", status_code=status.HTTP_201_CREATED)
async def record_metric(
    request: RecordMetricRequest,
    services: Services = Depends(get_services),
):
    """Append one sample. Persistence failures are logged, never returned."""
    await asyncio.to_thread(
        services.sampler.record_metric, request.name, request.value, request.labels
    )
    return {"success": True, "data": {"name": request.name}}


@router.get("/{name}")
async def get_metrics(
    name: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = 100,
    services: Services = Depends(get_services),
):
    """Get raw samples for a metric, newest first."""
    limit = max(1, min(1000, limit))
    samples = await asyncio.to_thread(services.sampler.get_metrics, name, start=start, end=end)

    return {
        "success": True,
        "data": {
            "name": name,
            "total_count": len(samples),
            "samples": [s.model_dump(mode="json") for s in samples[:limit]],
        },
    }


@router.get("/{name}/aggregate")
async def get_aggregated_metrics(
    name: str,
    aggregation: Aggregation = Aggregation.AVG,
    interval: Interval = Interval.HOUR,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    services: Services = Depends(get_services),
):
    """Get bucketed aggregates for a metric, newest bucket first."""
    logger.info(
        "metrics_aggregate",
        metric_name=name,
        aggregation=aggregation.value,
        interval=interval.value,
    )
    buckets = await asyncio.to_thread(
        services.sampler.get_aggregated_metrics,
        name,
        aggregation,
        interval,
        start=start,
        end=end,
    )

    return {
        "success": True,
        "data": {
            "name": name,
            "aggregation": aggregation.value,
            "interval": interval.value,
            "points": [
                {"timestamp": b.bucket_start.isoformat(), "value": b.value} for b in buckets
            ],
        },
    }
