"""
Prometheus metrics for the orderhub service.
"""
from prometheus_client import Counter, Histogram, Gauge, Info, CollectorRegistry
import psutil
import os


class Metrics:
    """
    Centralized metrics for the orderhub service.
    """

    def __init__(self, service_name: str = "orderhub", version: str = "0.1.0", registry=None):
        self.service_name = service_name
        self.version = version
        self.registry = registry or CollectorRegistry()

        # HTTP Metrics
        self.http_requests_total = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["service", "method", "path", "status"],
            registry=self.registry,
        )

        self.http_request_duration = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["service", "method", "path"],
            registry=self.registry,
        )

        self.http_requests_active = Gauge(
            "http_requests_active",
            "Number of active HTTP requests",
            registry=self.registry,
        )

        # Application Info
        self.app_info = Info(
            "app",
            "Application information",
            registry=self.registry,
        )
        self.app_info.info({"service": service_name, "version": version})

        self.app_up = Gauge(
            "app_up",
            "Application up status (1=up, 0=down)",
            ["service", "version"],
            registry=self.registry,
        )
        self.app_up.labels(service=service_name, version=version).set(1)

        # Business Metrics
        self.events_ingested_total = Counter(
            "orderhub_events_ingested_total",
            "Total events appended to the log",
            ["event_type"],
            registry=self.registry,
        )

        self.ingest_duration = Histogram(
            "orderhub_ingest_duration_seconds",
            "Time from append start to broadcast queued",
            ["event_type"],
            registry=self.registry,
        )

        self.orders_active = Gauge(
            "orderhub_orders_active",
            "Orders whose latest status is not delivered",
            registry=self.registry,
        )

        self.subscribers_active = Gauge(
            "orderhub_subscribers_active",
            "Connected live stream subscribers",
            registry=self.registry,
        )

        self.broadcast_dropped_total = Counter(
            "orderhub_broadcast_dropped_total",
            "Subscribers dropped because they stopped draining their queue",
            registry=self.registry,
        )

        # System Metrics
        self._setup_process_metrics()

    def _setup_process_metrics(self):
        """Set up process-level metrics using psutil."""
        self.process_memory_bytes = Gauge(
            "orderhub_process_resident_memory_bytes",
            "Resident memory size in bytes",
            ["service"],
            registry=self.registry,
        )

        self.process_open_fds = Gauge(
            "orderhub_process_open_fds",
            "Number of open file descriptors",
            ["service"],
            registry=self.registry,
        )

        self.update_system_metrics()

    def update_system_metrics(self):
        """Update system metrics from psutil."""
        try:
            process = psutil.Process(os.getpid())

            memory_info = process.memory_info()
            self.process_memory_bytes.labels(service=self.service_name).set(memory_info.rss)

            try:
                num_fds = process.num_fds()
                self.process_open_fds.labels(service=self.service_name).set(num_fds)
            except AttributeError:
                # num_fds() not available on all platforms
                pass

        except psutil.Error:
            pass

    def record_event_ingested(self, event_type: str, duration_seconds: float):
        """Record one committed event."""
        self.events_ingested_total.labels(event_type=event_type).inc()
        self.ingest_duration.labels(event_type=event_type).observe(duration_seconds)
