"""
Prometheus metrics for the bid comparison platform.
"""

from prometheus_client import Counter, Histogram, Gauge


# ── Comparisons ──────────────────────────────────────────────
comparisons_started_total = Counter(
    "comparisons_started_total",
    "Total comparison analyses started",
    ["trade_type"],
)

comparisons_completed_total = Counter(
    "comparisons_completed_total",
    "Total comparison analyses completed",
    ["trade_type"],
)

comparisons_failed_total = Counter(
    "comparisons_failed_total",
    "Total comparison analyses that failed",
    ["error_code"],
)

# ── Documents ────────────────────────────────────────────────
documents_extracted_total = Counter(
    "bid_documents_extracted_total",
    "Total bid documents extracted to line items",
    ["file_kind"],
)

documents_failed_total = Counter(
    "bid_documents_failed_total",
    "Total bid documents that failed extraction",
    ["error_code"],
)

# ── Pipeline Stages ──────────────────────────────────────────
pipeline_stage_duration_seconds = Histogram(
    "pipeline_stage_duration_seconds",
    "Time per pipeline stage",
    ["stage"],
    buckets=[0.5, 1, 5, 10, 30, 60, 120, 300],
)

pipeline_stage_decode_failures_total = Counter(
    "pipeline_stage_decode_failures_total",
    "Completions that did not decode into the stage output shape",
    ["stage"],
)

extracted_items_total = Counter(
    "extracted_items_total",
    "Total line items extracted",
    ["needs_review"],
)

confidence_scores = Histogram(
    "extraction_confidence_scores",
    "Distribution of per-item extraction confidence",
    ["trade_type"],
    buckets=[0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 0.95, 1.0],
)

normalization_match_rate = Histogram(
    "normalization_match_rate",
    "Share of extracted items matched into non-gap groups",
    ["trade_type"],
    buckets=[0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 1.0],
)

# ── Completion Service ───────────────────────────────────────
completion_attempts_total = Counter(
    "completion_attempts_total",
    "Completion requests issued, by outcome",
    ["outcome"],
)

completion_latency_seconds = Histogram(
    "completion_latency_seconds",
    "Latency of completion requests",
    buckets=[0.5, 1, 2, 5, 10, 30, 60, 120],
)

# ── Leveling ─────────────────────────────────────────────────
leveling_recomputes_total = Counter(
    "leveling_recomputes_total",
    "Leveling recomputations, by whether the ranking changed",
    ["ranking_changed"],
)

# ── Training ─────────────────────────────────────────────────
training_exports_total = Counter(
    "training_exports_total",
    "Fine-tuning exports generated",
    ["outcome"],
)

training_examples_exported = Gauge(
    "training_examples_exported",
    "Examples in the most recent fine-tuning export",
)

# ── Worker ───────────────────────────────────────────────────
worker_jobs_active = Gauge(
    "worker_jobs_active",
    "Number of currently active worker jobs",
)
