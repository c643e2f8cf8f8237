from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "path", "status"],
)
REQUEST_ERRORS = Counter(
    "http_request_errors_total",
    "Total HTTP 5xx responses",
    ["method", "path", "status"],
)

JOB_DURATION = Histogram(
    "job_duration_seconds",
    "Background job duration",
    ["task", "status"],
)

ENTITLEMENT_ACTIVATIONS = Counter(
    "entitlement_activations_total",
    "Subscription activations by origin and outcome",
    ["origin", "outcome"],
)
ENTITLEMENT_EXPIRATIONS = Counter(
    "entitlement_expirations_total",
    "Subscription expirations by outcome",
    ["outcome"],
)
PROVISIONING_OPERATIONS = Counter(
    "aaa_provisioning_operations_total",
    "AAA credential store operations",
    ["operation", "outcome"],
)
IDENTITY_RESOLUTIONS = Counter(
    "identity_resolutions_total",
    "Connection reports by matched identity rule",
    ["rule"],
)
VOUCHER_REDEMPTIONS = Counter(
    "voucher_redemptions_total",
    "Voucher redemption attempts by outcome",
    ["outcome"],
)
SWEEP_RECORDS = Counter(
    "expiry_sweep_records_total",
    "Records handled by the expiry reconciler",
    ["result"],
)


def observe_job(task_name: str, status: str, duration: float) -> None:
    JOB_DURATION.labels(task=task_name, status=status).observe(duration)


class AccessMetrics:
    """Observability sink handed to each engine service.

    The default instance writes to the Prometheus collectors above; tests
    pass a recording double instead.
    """

    def activation(self, origin: str, outcome: str) -> None:
        ENTITLEMENT_ACTIVATIONS.labels(origin=origin, outcome=outcome).inc()

    def expiration(self, outcome: str) -> None:
        ENTITLEMENT_EXPIRATIONS.labels(outcome=outcome).inc()

    def provisioning(self, operation: str, outcome: str) -> None:
        PROVISIONING_OPERATIONS.labels(operation=operation, outcome=outcome).inc()

    def identity(self, rule: str) -> None:
        IDENTITY_RESOLUTIONS.labels(rule=rule).inc()

    def voucher(self, outcome: str) -> None:
        VOUCHER_REDEMPTIONS.labels(outcome=outcome).inc()

    def sweep(self, result: str, count: int = 1) -> None:
        if count:
            SWEEP_RECORDS.labels(result=result).inc(count)

    def job(self, task_name: str, status: str, duration: float) -> None:
        observe_job(task_name, status, duration)


default_metrics = AccessMetrics()
