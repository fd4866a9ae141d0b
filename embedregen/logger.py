"""
Structured logging for embedding regeneration runs.

Console and file output through the standard logging module, plus a small
set of run metrics (batches, rows, failures by class) so an operator
reading the log of an unattended run can tell healthy from degraded.
"""

import json
import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional


class StructuredLogger:
    """
    Centralized logger with support for console and file outputs.
    Tracks metrics for monitoring worker health.
    """

    def __init__(
        self,
        name: str = "embedregen",
        level: str = "INFO",
        log_dir: Optional[Path] = None,
        enable_file: bool = True,
        enable_console: bool = True,
    ):
        """
        Initialize the structured logger.

        Args:
            name: Logger name
            level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            log_dir: Directory for log files (default: logs/)
            enable_file: Write logs to file
            enable_console: Output logs to console
        """
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper()))
        self.logger.handlers.clear()
        self.logger.propagate = False

        self.metrics = self._empty_metrics()

        if enable_console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(getattr(logging, level.upper()))
            console_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            console_handler.setFormatter(console_formatter)
            self.logger.addHandler(console_handler)

        if enable_file:
            if log_dir is None:
                log_dir = Path("logs")
            log_dir.mkdir(parents=True, exist_ok=True)

            log_file = log_dir / f"embedregen_{datetime.now().strftime('%Y%m%d')}.log"
            file_handler = logging.FileHandler(log_file, encoding='utf-8')
            file_handler.setLevel(logging.DEBUG)  # file always gets everything
            file_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(process)d | %(name)s:%(lineno)d | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            file_handler.setFormatter(file_formatter)
            self.logger.addHandler(file_handler)

    @staticmethod
    def _empty_metrics() -> dict:
        return {
            "batches_attempted": 0,
            "batches_succeeded": 0,
            "batches_failed": 0,
            "rows_processed": 0,
            "sweep_resets": 0,
            "checkpoint_failures": 0,
            "errors_by_type": {},
        }

    def debug(self, message: str, **kwargs):
        """Log debug message with optional context."""
        self._log(logging.DEBUG, message, kwargs)

    def info(self, message: str, **kwargs):
        """Log info message with optional context."""
        self._log(logging.INFO, message, kwargs)

    def warning(self, message: str, **kwargs):
        """Log warning message with optional context."""
        self._log(logging.WARNING, message, kwargs)

    def error(self, message: str, **kwargs):
        """Log error message with optional context."""
        self._log(logging.ERROR, message, kwargs)

    def critical(self, message: str, **kwargs):
        """Log critical message with optional context."""
        self._log(logging.CRITICAL, message, kwargs)

    def _log(self, level: int, message: str, context: dict):
        if context:
            message = f"{message} | Context: {json.dumps(context, default=str)}"
        self.logger.log(level, message)

    # Metric tracking methods

    def record_batch_attempt(self):
        self.metrics["batches_attempted"] += 1

    def record_batch_success(self, rows: int):
        self.metrics["batches_succeeded"] += 1
        self.metrics["rows_processed"] += rows

    def record_batch_failure(self, error_type: str):
        """Record a failed batch under its failure class."""
        self.metrics["batches_failed"] += 1
        errors = self.metrics["errors_by_type"]
        errors[error_type] = errors.get(error_type, 0) + 1

    def record_sweep_reset(self):
        self.metrics["sweep_resets"] += 1

    def record_checkpoint_failure(self):
        self.metrics["checkpoint_failures"] += 1

    def get_metrics(self) -> dict:
        """Return current metrics with a derived success rate."""
        metrics_copy = dict(self.metrics)
        metrics_copy["errors_by_type"] = dict(self.metrics["errors_by_type"])
        attempted = metrics_copy["batches_attempted"]
        if attempted > 0:
            metrics_copy["success_rate"] = round(
                metrics_copy["batches_succeeded"] / attempted, 3
            )
        return metrics_copy

    def reset_metrics(self):
        self.metrics = self._empty_metrics()

    def log_metrics_summary(self):
        """Log a summary of current metrics."""
        metrics = self.get_metrics()

        attempted = metrics["batches_attempted"]
        succeeded = metrics["batches_succeeded"]
        overall_rate = 0
        if attempted > 0:
            overall_rate = round(succeeded / attempted * 100, 1)

        self.info("=== Regeneration Run Metrics ===")
        self.info(f"Batches: {succeeded}/{attempted} ({overall_rate}% success)")
        self.info(f"Rows processed: {metrics['rows_processed']}")
        if metrics["sweep_resets"]:
            self.info(f"Only-missing sweep resets: {metrics['sweep_resets']}")
        if metrics["checkpoint_failures"]:
            self.info(f"Checkpoint write failures: {metrics['checkpoint_failures']}")

        if metrics["errors_by_type"]:
            self.info("Error Types:")
            for error_type, count in metrics["errors_by_type"].items():
                self.info(f"  {error_type}: {count}")


_global_logger: Optional[StructuredLogger] = None


def get_logger(
    name: str = "embedregen",
    level: Optional[str] = None,
    **kwargs
) -> StructuredLogger:
    """
    Get or create the global logger instance.

    Args:
        name: Logger name
        level: Log level; defaults to EMBEDREGEN_LOG_LEVEL or INFO
        **kwargs: Additional arguments passed to StructuredLogger

    Returns:
        StructuredLogger instance
    """
    global _global_logger

    if _global_logger is None:
        level = level or os.getenv("EMBEDREGEN_LOG_LEVEL", "INFO")
        if "log_dir" not in kwargs and os.getenv("EMBEDREGEN_LOG_DIR"):
            kwargs["log_dir"] = Path(os.environ["EMBEDREGEN_LOG_DIR"])
        _global_logger = StructuredLogger(name=name, level=level, **kwargs)

    return _global_logger


def reset_logger():
    """Reset the global logger (useful for testing)."""
    global _global_logger
    _global_logger = None
