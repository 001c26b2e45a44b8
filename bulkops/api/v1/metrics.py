from prometheus_client import Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response

router = APIRouter()

# Metrics Definitions
OPERATIONS_SUBMITTED = Counter(
    "bulk_operations_submitted_total",
    "Bulk operations accepted for background execution",
    ["operation_type"]
)

OPERATION_ITEMS = Counter(
    "bulk_operation_items_total",
    "Items processed by the executor",
    ["operation_type", "result"] # result=success|error
)

OPERATIONS_FINISHED = Counter(
    "bulk_operations_finished_total",
    "Bulk operations that reached a final status",
    ["operation_type", "status"]
)

OPERATION_DURATION = Histogram(
    "bulk_operation_duration_seconds",
    "Time from claim to final status",
    buckets=[0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 300.0, 900.0]
)

OPERATIONS_RUNNING = Gauge(
    "bulk_operations_running",
    "Operations currently being executed by this instance"
)

ROLLBACKS = Counter(
    "bulk_rollbacks_total",
    "Rollback attempts",
    ["result"] # rolled_back|rollback_failed
)

OPERATIONS_SWEPT = Counter(
    "bulk_operations_swept_total",
    "Records deleted by the retention sweeper"
)

STALE_RUNNING = Gauge(
    "bulk_operations_stale_running",
    "Running operations whose executor has not written progress recently"
)

@router.get("/metrics")
async def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
