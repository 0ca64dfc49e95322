from prometheus_client import Counter, Histogram, make_asgi_app

# Low-cardinality labels: route templates (e.g. /api/v1/files/{name}), never raw paths
REQUESTS = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "route", "status"],
)

LATENCY = Histogram(
    "http_request_duration_seconds",
    "Request latency in seconds",
    ["method", "route"],
)

STORE_REQUESTS = Counter(
    "filestore_store_requests_total",
    "Total object store requests",
    ["operation", "outcome"],
)

STORE_LATENCY = Histogram(
    "filestore_store_request_duration_seconds",
    "Object store request latency in seconds",
    ["operation"],
)

STORE_RETRIES = Counter(
    "filestore_store_retries_total",
    "Object store requests retried after a transient failure",
    ["reason"],
)

# ASGI app served at /metrics
metrics_app = make_asgi_app()
