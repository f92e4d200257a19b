"""Monitoring configuration for the bot."""
from prometheus_client import Counter, Histogram, start_http_server

# Session metrics
study_sessions_started = Counter(
    "lexibot_study_sessions_started_total",
    "Total number of study sessions started",
)

study_sessions_completed = Counter(
    "lexibot_study_sessions_completed_total",
    "Total number of study sessions that reached completion",
)

study_sessions_abandoned = Counter(
    "lexibot_study_sessions_abandoned_total",
    "Total number of study sessions exited before completion",
)

session_duration = Histogram(
    "lexibot_session_duration_seconds",
    "Duration of completed study sessions in seconds",
    buckets=[60, 300, 600, 1800, 3600],  # 1min, 5min, 10min, 30min, 1hour
)

# Answer metrics
recall_answers = Counter(
    "lexibot_recall_answers_total",
    "Recall self-assessments submitted",
    ["choice"],
)

spelling_attempts = Counter(
    "lexibot_spelling_attempts_total",
    "Spelling submissions by result",
    ["result"],
)

level_ups = Counter(
    "lexibot_level_ups_total",
    "Word level increases applied at phase completion",
)

# Database metrics
persistence_errors = Counter(
    "lexibot_persistence_errors_total",
    "Failed reads or writes against the word store",
    ["operation"],
)


def start_monitoring(port: int = 9090) -> None:
    """Start the Prometheus metrics server."""
    start_http_server(port)
