"""Prometheus metrics endpoint.

Exposes call and pipeline metrics for Prometheus scraping.
"""

from __future__ import annotations

from fastapi import APIRouter, Response

from callbridge.observability.metrics import get_content_type, get_metrics

router = APIRouter()


@router.get("/metrics")
async def metrics() -> Response:
    """Prometheus metrics in text exposition format."""
    return Response(
        content=get_metrics(),
        media_type=get_content_type(),
    )
