"""leadflow observability package: metrics and logging setup."""

from leadflow.observability.log_config import configure_logging
from leadflow.observability.metrics import MetricsCollector, get_metrics

__all__ = ["MetricsCollector", "configure_logging", "get_metrics"]
