from prometheus_client import Counter, Gauge, Histogram

JOBS_SUBMITTED = Counter(
    "dubbing_jobs_submitted_total", "Dubbing jobs queued", ["trigger"]
)
JOBS_FINISHED = Counter(
    "dubbing_jobs_finished_total", "Dubbing job attempts by outcome", ["outcome"]
)
STAGE_DURATION = Histogram(
    "dubbing_stage_duration_seconds",
    "Time spent in each pipeline stage",
    ["stage"],
    buckets=(1, 5, 15, 30, 60, 120, 300, 600, 1200, 1800, 3600),
)
JOBS_BY_STATUS = Gauge(
    "dubbing_jobs", "Dubbing jobs currently in each status", ["status"]
)
