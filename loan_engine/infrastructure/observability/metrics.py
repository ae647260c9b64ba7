"""Prometheus metrics for monitoring deductions, webhooks, scores and loan flow"""

from prometheus_client import Counter, Histogram

# Deduction metrics
deduction_outcome_counter = Counter(
    "loan_engine_deduction_total",
    "Scheduled deduction attempts by outcome",
    ["outcome"],  # success | retry | failed | cancelled | skipped | error
)

gateway_latency_histogram = Histogram(
    "payment_gateway_latency_seconds",
    "Payment gateway charge response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

# Webhook metrics
webhook_event_counter = Counter(
    "payment_webhook_events_total",
    "Payment gateway callbacks received",
    ["event_type", "outcome"],  # processed | rejected | error
)

# Scoring metrics
score_recompute_counter = Counter(
    "credit_score_recomputations_total",
    "Credit score recomputations",
    ["outcome"],  # stored | conflict
)

score_histogram = Histogram(
    "credit_score_value",
    "Distribution of computed credit scores",
    buckets=[300, 400, 500, 580, 650, 700, 750, 800, 850],
)

# Loan metrics
loan_transition_counter = Counter(
    "loan_engine_loan_transitions_total",
    "Loan status transitions",
    ["status"],
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_deduction_outcome(outcome: str) -> None:
    deduction_outcome_counter.labels(outcome=outcome).inc()


def record_score(score: int) -> None:
    """Record a stored score for monitoring the score distribution"""
    score_recompute_counter.labels(outcome="stored").inc()
    score_histogram.observe(score)
