"""
Prometheus metrics for sync jobs and state submissions.

Collected in the default registry, so they are served on /metrics next to
the HTTP metrics recorded by the instrumentator in main.py.
"""

from prometheus_client import Counter

SYNC_JOBS = Counter(
    "wotc_sync_jobs_total",
    "Sync job executions by outcome",
    ["job_type", "provider", "status"],
)
SYNC_RECORDS = Counter(
    "wotc_sync_records_total",
    "Records handled by sync jobs",
    ["job_type", "outcome"],
)
SUBMISSION_UPLOADS = Counter(
    "wotc_submission_uploads_total",
    "State submission file uploads by outcome",
    ["jurisdiction", "status"],
)


def record_job_metrics(job_type: str, provider_id: str, success: bool, result) -> None:
    SYNC_JOBS.labels(job_type=job_type, provider=provider_id, status="completed" if success else "failed").inc()
    for outcome, count in (
        ("created", result.records_created),
        ("updated", result.records_updated),
        ("failed", result.records_failed),
    ):
        if count:
            SYNC_RECORDS.labels(job_type=job_type, outcome=outcome).inc(count)


def record_upload_metrics(jurisdiction: str, success: bool) -> None:
    SUBMISSION_UPLOADS.labels(jurisdiction=jurisdiction, status="success" if success else "failed").inc()
