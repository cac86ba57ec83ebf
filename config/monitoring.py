# config/monitoring.py

import os

from prometheus_client import Counter, Histogram


class MonitoringConfig:
    """Monitoring and logging configuration"""

    MONITORING_ENABLED = os.environ.get("MONITORING_ENABLED", "false").lower() == "true"
    METRICS_ENDPOINT = os.environ.get("METRICS_ENDPOINT", "/metrics")
    HEALTH_CHECK_ENDPOINT = os.environ.get("HEALTH_CHECK_ENDPOINT", "/health")

    # Logging Configuration
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "json")  # 'json' or 'text'
    LOG_DIR = os.environ.get("LOG_DIR", "logs")
    LOG_FILE_MAX_BYTES = int(os.environ.get("LOG_FILE_MAX_BYTES", 10485760))  # 10MB
    LOG_FILE_BACKUP_COUNT = int(os.environ.get("LOG_FILE_BACKUP_COUNT", 10))

    ENABLE_FILE_LOGGING = os.environ.get("ENABLE_FILE_LOGGING", "true").lower() == "true"
    ENABLE_CONSOLE_LOGGING = os.environ.get("ENABLE_CONSOLE_LOGGING", "true").lower() == "true"

    APP_NAME = os.environ.get("APP_NAME", "Civic Positions")
    APP_VERSION = os.environ.get("APP_VERSION", "1.0.0")


class DevelopmentMonitoringConfig(MonitoringConfig):
    """Development-specific monitoring configuration"""

    LOG_LEVEL = "DEBUG"
    LOG_FORMAT = "text"  # More readable in development
    ENABLE_FILE_LOGGING = True
    ENABLE_CONSOLE_LOGGING = True


class ProductionMonitoringConfig(MonitoringConfig):
    """Production-specific monitoring configuration"""

    LOG_LEVEL = "INFO"
    LOG_FORMAT = "json"  # Structured logging for production
    ENABLE_FILE_LOGGING = True
    ENABLE_CONSOLE_LOGGING = False  # Usually handled by container orchestration


class TestingMonitoringConfig(MonitoringConfig):
    """Testing-specific monitoring configuration"""

    MONITORING_ENABLED = False
    LOG_LEVEL = "WARNING"
    LOG_FORMAT = "text"
    ENABLE_FILE_LOGGING = False
    ENABLE_CONSOLE_LOGGING = False


class ImporterMonitoring:
    """Prometheus metric helpers for importer API endpoints."""

    IMPORT_LOGS_LIST_COUNTER = Counter(
        "importer_logs_list_requests_total",
        "Total import log list API requests.",
        labelnames=("status",),
    )
    IMPORT_LOGS_LIST_LATENCY = Histogram(
        "importer_logs_list_request_seconds",
        "Latency histogram for import log list API.",
        labelnames=("status",),
        buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5),
    )

    IMPORT_LOG_DETAIL_COUNTER = Counter(
        "importer_logs_detail_requests_total",
        "Total import log detail API requests.",
        labelnames=("status",),
    )
    IMPORT_LOG_DETAIL_LATENCY = Histogram(
        "importer_logs_detail_request_seconds",
        "Latency histogram for import log detail API.",
        labelnames=("status",),
        buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5),
    )

    ERROR_REPORT_COUNTER = Counter(
        "importer_error_report_requests_total",
        "Total error report export requests.",
        labelnames=("status",),
    )
    ERROR_REPORT_LATENCY = Histogram(
        "importer_error_report_request_seconds",
        "Latency histogram for error report exports.",
        labelnames=("status",),
        buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10),
    )
    ERROR_REPORT_ROW_COUNT = Histogram(
        "importer_error_report_row_count",
        "Number of error rows written into exported reports.",
        labelnames=("status",),
        buckets=(0, 1, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000),
    )

    VALIDATE_COUNTER = Counter(
        "importer_validate_requests_total",
        "Total validate-only upload requests.",
        labelnames=("status",),
    )
    VALIDATE_LATENCY = Histogram(
        "importer_validate_request_seconds",
        "Latency histogram for validate-only uploads.",
        labelnames=("status",),
        buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30),
    )

    @classmethod
    def record_logs_list(cls, *, duration_seconds: float, status: str):
        cls.IMPORT_LOGS_LIST_COUNTER.labels(status=status).inc()
        cls.IMPORT_LOGS_LIST_LATENCY.labels(status=status).observe(max(duration_seconds, 0.0))

    @classmethod
    def record_log_detail(cls, *, duration_seconds: float, status: str):
        cls.IMPORT_LOG_DETAIL_COUNTER.labels(status=status).inc()
        cls.IMPORT_LOG_DETAIL_LATENCY.labels(status=status).observe(max(duration_seconds, 0.0))

    @classmethod
    def record_error_report(cls, *, duration_seconds: float, status: str, row_count: int):
        cls.ERROR_REPORT_COUNTER.labels(status=status).inc()
        cls.ERROR_REPORT_LATENCY.labels(status=status).observe(max(duration_seconds, 0.0))
        cls.ERROR_REPORT_ROW_COUNT.labels(status=status).observe(float(max(row_count, 0)))

    @classmethod
    def record_validate(cls, *, duration_seconds: float, status: str):
        cls.VALIDATE_COUNTER.labels(status=status).inc()
        cls.VALIDATE_LATENCY.labels(status=status).observe(max(duration_seconds, 0.0))
