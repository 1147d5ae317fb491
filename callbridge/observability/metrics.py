"""Prometheus metrics for the call bridge.

Provides metrics for monitoring call volume, pipeline latency and upstream health.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, generate_latest
from prometheus_client.exposition import CONTENT_TYPE_LATEST

# =============================================================================
# Counters
# =============================================================================

CALL_TOTAL = Counter(
    "callbridge_call_total",
    "Total gateway calls handled",
    ["outcome"],
)

UTTERANCE_TOTAL = Counter(
    "callbridge_utterances_total",
    "Utterances received from the recognizer",
    ["kind"],  # interim, final, forced, superseded
)

PIPELINE_TOTAL = Counter(
    "callbridge_pipeline_total",
    "Final-utterance pipelines by outcome",
    ["outcome"],
)

UPSTREAM_ERRORS = Counter(
    "callbridge_upstream_errors_total",
    "Upstream failures surfaced to the session",
    ["service", "kind"],
)

CONTEXT_WRITES = Counter(
    "callbridge_context_writes_total",
    "Context store batch writes by result",
    ["result"],
)

# =============================================================================
# Gauges
# =============================================================================

ACTIVE_CALLS = Gauge(
    "callbridge_active_calls",
    "Currently connected gateway calls",
)

# =============================================================================
# Histograms
# =============================================================================

CALL_DURATION = Histogram(
    "callbridge_call_duration_seconds",
    "Call duration in seconds",
    buckets=[10, 30, 60, 120, 300, 600, 900, 1800],
)

STT_LATENCY = Histogram(
    "callbridge_stt_latency_seconds",
    "Speech-to-text latency (time to first word)",
    buckets=[0.1, 0.25, 0.5, 0.75, 1.0, 1.5, 2.0, 3.0, 5.0],
)

LLM_FIRST_TOKEN = Histogram(
    "callbridge_llm_first_token_seconds",
    "LLM time to first token",
    buckets=[0.1, 0.25, 0.5, 0.75, 1.0, 1.5, 2.0, 3.0, 5.0],
)

TTS_FIRST_CHUNK = Histogram(
    "callbridge_tts_first_chunk_seconds",
    "TTS time to first audio chunk",
    buckets=[0.05, 0.1, 0.25, 0.5, 0.75, 1.0, 1.5, 2.0],
)

CONTEXT_RETRIEVAL_LATENCY = Histogram(
    "callbridge_context_retrieval_seconds",
    "Context retrieval latency",
    buckets=[0.01, 0.025, 0.05, 0.075, 0.1, 0.15, 0.2, 0.3, 0.5],
)

CONTEXT_RESULTS = Histogram(
    "callbridge_context_results",
    "Context records returned per retrieval",
    buckets=[0, 1, 2, 3, 4, 5, 10],
)

# =============================================================================
# Helper Functions
# =============================================================================


def record_call_metrics(
    outcome: str,
    duration_seconds: float,
    *,
    stt_latency_ms: float | None = None,
) -> None:
    """Record metrics for a completed call.

    Args:
        outcome: Call outcome (completed, dropped)
        duration_seconds: Total call duration
        stt_latency_ms: Time to first recognized word in milliseconds
    """
    CALL_TOTAL.labels(outcome=outcome).inc()
    CALL_DURATION.observe(duration_seconds)

    if stt_latency_ms is not None and stt_latency_ms > 0:
        STT_LATENCY.observe(stt_latency_ms / 1000)


def record_pipeline_metrics(
    outcome: str,
    *,
    llm_latency_ms: float | None = None,
    tts_latency_ms: float | None = None,
) -> None:
    """Record the outcome and latencies of one final-utterance pipeline.

    Args:
        outcome: completed, empty_input, llm_error, tts_error, empty_response
        llm_latency_ms: LLM first token latency in milliseconds
        tts_latency_ms: TTS first chunk latency in milliseconds
    """
    PIPELINE_TOTAL.labels(outcome=outcome).inc()

    if llm_latency_ms is not None and llm_latency_ms > 0:
        LLM_FIRST_TOKEN.observe(llm_latency_ms / 1000)

    if tts_latency_ms is not None and tts_latency_ms > 0:
        TTS_FIRST_CHUNK.observe(tts_latency_ms / 1000)


def record_upstream_error(service: str, error: BaseException) -> None:
    """Count an upstream failure by service and exception type."""
    UPSTREAM_ERRORS.labels(service=service, kind=type(error).__name__).inc()


def record_utterance(kind: str) -> None:
    """Count a recognizer event (interim, final, forced, superseded)."""
    UTTERANCE_TOTAL.labels(kind=kind).inc()


def record_context_retrieval(retrieval_time_ms: float, result_count: int) -> None:
    """Record context retrieval latency and result count."""
    CONTEXT_RETRIEVAL_LATENCY.observe(retrieval_time_ms / 1000)
    CONTEXT_RESULTS.observe(result_count)


def record_context_write(result: str) -> None:
    """Count a context batch write (ok, partial, timeout, error)."""
    CONTEXT_WRITES.labels(result=result).inc()


def get_metrics() -> bytes:
    """Generate Prometheus metrics output.

    Returns:
        Metrics in Prometheus text exposition format.
    """
    return generate_latest()


def get_content_type() -> str:
    """Get the content type for Prometheus metrics.

    Returns:
        Content-Type header value for Prometheus metrics.
    """
    return CONTENT_TYPE_LATEST
