from aiohttp import web
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    generate_latest,
    Counter,
    Gauge,
    Histogram,
)

# -------------------------
# Request Metrics
# -------------------------

# one sample per fetch attempt, retries included
REQUEST_COUNT = Counter(
    "asset_crawler_requests_total",
    "HTTP fetch attempts",
    ["outcome"],
)

REQUEST_LATENCY = Histogram(
    "asset_crawler_request_latency_seconds",
    "Time spent on one fetch attempt",
)

# -------------------------
# Resource Metrics
# -------------------------

RESOURCES_RECORDED = Counter(
    "asset_crawler_resources_total",
    "Recorded resource outcomes",
    ["kind", "outcome"],
)

BYTES_WRITTEN = Counter(
    "asset_crawler_bytes_written_total",
    "Bytes stored under the save root",
)

# -------------------------
# Worker / Queue / Job Metrics
# -------------------------

WORKERS_ACTIVE = Gauge(
    "asset_crawler_workers_active",
    "Worker loops currently running",
)

QUEUE_PENDING = Gauge(
    "asset_crawler_queue_pending",
    "Tasks waiting in job queues",
)

JOBS_FINISHED = Counter(
    "asset_crawler_jobs_total",
    "Jobs that reached a terminal status",
    ["status"],
)


# -------------------------
# /metrics endpoint
# -------------------------

async def metrics_handler(request):
    data = generate_latest()

    # aiohttp refuses a charset inside content_type
    ctype = CONTENT_TYPE_LATEST.split(";")[0]

    return web.Response(
        body=data,
        content_type=ctype
    )
