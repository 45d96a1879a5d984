"""
Prometheus metrics for steps and workflow instances
"""

from prometheus_client import Counter, Histogram, start_http_server
import structlog

logger = structlog.get_logger()

step_attempts = Counter(
    'sitegen_step_attempts_total',
    'Step attempts by outcome',
    ['step', 'outcome']
)

step_duration = Histogram(
    'sitegen_step_duration_seconds',
    'Duration of successful step executions, including retries',
    ['step'],
    buckets=[0.5, 1, 5, 10, 30, 60, 120, 300, 600]
)

workflows = Counter(
    'sitegen_workflows_total',
    'Finished workflow instances by terminal status',
    ['status']
)

regenerations = Counter(
    'sitegen_regenerations_total',
    'Quality-gate regeneration passes by outcome',
    ['outcome']
)


def record_attempt(step: str, outcome: str):
    """outcome: success | failure | timeout | cached"""
    step_attempts.labels(step=step, outcome=outcome).inc()


def record_step_duration(step: str, seconds: float):
    step_duration.labels(step=step).observe(seconds)


def record_workflow(status: str):
    workflows.labels(status=status).inc()


def record_regeneration(outcome: str):
    regenerations.labels(outcome=outcome).inc()


def start_metrics_server(port: int):
    start_http_server(port)
    logger.info("Prometheus metrics server started", port=port)
