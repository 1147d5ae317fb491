"""Observability module for metrics."""

from callbridge.observability.metrics import (
    ACTIVE_CALLS,
    CALL_DURATION,
    CALL_TOTAL,
    LLM_FIRST_TOKEN,
    PIPELINE_TOTAL,
    STT_LATENCY,
    TTS_FIRST_CHUNK,
    UPSTREAM_ERRORS,
    record_call_metrics,
    record_pipeline_metrics,
    record_upstream_error,
)

__all__ = [
    "CALL_TOTAL",
    "CALL_DURATION",
    "ACTIVE_CALLS",
    "PIPELINE_TOTAL",
    "UPSTREAM_ERRORS",
    "STT_LATENCY",
    "LLM_FIRST_TOKEN",
    "TTS_FIRST_CHUNK",
    "record_call_metrics",
    "record_pipeline_metrics",
    "record_upstream_error",
]
