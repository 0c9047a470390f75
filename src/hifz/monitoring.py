"""Monitoring configuration for the memorization engine."""
from prometheus_client import Counter, Histogram, start_http_server

# Recitation metrics
recitation_attempts = Counter(
    "hifz_recitation_attempts_total",
    "Total number of recorded recitation attempts",
    ["stage", "outcome"],
)

recognition_errors = Counter(
    "hifz_recognition_errors_total",
    "Total number of discarded attempts caused by recognition errors",
    ["error_type"],
)

scoring_duration = Histogram(
    "hifz_scoring_duration_seconds",
    "Time spent scoring a single transcript",
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5],
)

# Progression metrics
stage_transitions = Counter(
    "hifz_stage_transitions_total",
    "Total number of stage transitions",
    ["from_stage", "to_stage"],
)

ayahs_mastered = Counter(
    "hifz_ayahs_mastered_total",
    "Total number of ayahs that passed the recall stage",
)

transition_pairs_completed = Counter(
    "hifz_transition_pairs_completed_total",
    "Total number of completed transition pairs",
)

ayah_reviews = Counter(
    "hifz_ayah_reviews_total",
    "Total number of graded reviews of mastered ayahs",
    ["performance"],
)

# Database metrics
db_operations = Counter(
    "hifz_db_operations_total",
    "Total number of database operations",
    ["operation_type"],
)


def start_monitoring(port: int = 9090) -> None:
    """Start the Prometheus metrics server."""
    start_http_server(port)
