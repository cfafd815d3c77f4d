from __future__ import annotations

from prometheus_client import Counter, Histogram, Gauge

# --- Request-level metrics (low-cardinality) ---
CHAT_REQUESTS_TOTAL = Counter(
    "medgate_chat_requests_total",
    "Total number of /api/chat requests",
    ["mode"],
)

CHAT_ERRORS_TOTAL = Counter(
    "medgate_chat_errors_total",
    "Total number of /api/chat errors",
    ["kind"],
)

# --- Gate metrics ---
GATE_DECISIONS_TOTAL = Counter(
    "medgate_gate_decisions_total",
    "Gate outcomes per policy",
    ["policy", "decision"],
)

CLASSIFIER_CALLS_TOTAL = Counter(
    "medgate_classifier_calls_total",
    "Classifier calls by verdict (yes, no, failed)",
    ["verdict"],
)

GATE_LATENCY_SECONDS = Histogram(
    "medgate_gate_latency_seconds",
    "Time spent deciding allow/deny, classifier calls included",
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 20),
)

# --- Upstream metrics ---
UPSTREAM_REQUESTS_TOTAL = Counter(
    "medgate_upstream_requests_total",
    "Chat-completion calls to the upstream provider",
    ["model", "status"],
)

UPSTREAM_LATENCY_SECONDS = Histogram(
    "medgate_upstream_latency_seconds",
    "Latency of upstream chat-completion calls",
    ["model"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 20, 60, 120),
)

UPSTREAM_PROMPT_TOKENS_TOTAL = Counter(
    "medgate_upstream_prompt_tokens_total",
    "Prompt tokens reported by the upstream provider",
    ["model"],
)

UPSTREAM_COMPLETION_TOKENS_TOTAL = Counter(
    "medgate_upstream_completion_tokens_total",
    "Completion tokens reported by the upstream provider",
    ["model"],
)

# --- Sessions ---
ACTIVE_SESSIONS = Gauge(
    "medgate_active_sessions",
    "Sessions currently held by the in-memory store",
)

# --- In-flight gauge ---
INFLIGHT = Gauge(
    "medgate_inflight_requests",
    "Number of in-flight /api/chat requests",
)
