"""
Structured logging configuration for the health records service.
Provides request tracking, latency metrics, and audit logging.
"""

import asyncio
import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime
from functools import wraps
from typing import Dict, Optional

from healthrecords.utils.config import LatencyConfig, settings

# Request context for tracking
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar("user_id", default=None)


class StructuredFormatter(logging.Formatter):
    """Custom formatter for structured JSON logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured JSON."""
        log_entry = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if request_id := request_id_var.get():
            log_entry["request_id"] = request_id
        if user_id := user_id_var.get():
            log_entry["user_id"] = user_id

        if hasattr(record, "extra_fields"):
            log_entry.update(record.extra_fields)

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class LatencyLogger:
    """Specialized logger for latency tracking."""

    def __init__(self, name: str = "latency"):
        self.logger = logging.getLogger(name)

    def log_latency(
        self,
        operation: str,
        duration_ms: float,
        success: bool = True,
        component: Optional[str] = None,
        **kwargs,
    ) -> None:
        """Log operation latency with context."""
        extra_fields = {
            "operation": operation,
            "duration_ms": duration_ms,
            "success": success,
            "component": component,
            **kwargs,
        }

        threshold_exceeded = kwargs.get("threshold_exceeded", False)
        if threshold_exceeded:
            level = logging.WARNING
        elif duration_ms > LatencyConfig.CRITICAL_ANALYSIS_LATENCY:
            level = logging.ERROR
        elif duration_ms > LatencyConfig.WARNING_ANALYSIS_LATENCY:
            level = logging.WARNING
        else:
            level = logging.INFO

        message = f"{operation} completed in {duration_ms:.2f}ms"
        if threshold_exceeded:
            message += " [THRESHOLD EXCEEDED]"
        if not success:
            message += " [FAILED]"

        self.logger.log(level, message, extra={"extra_fields": extra_fields})


class ComplianceLogger:
    """Audit trail for access to protected health information."""

    def __init__(self, name: str = "compliance"):
        self.logger = logging.getLogger(name)

    def log_data_access(
        self,
        resource_type: str,
        resource_id: str,
        user_id: str,
        operation: str,
        success: bool,
        **kwargs,
    ) -> None:
        """Log data access for audit trail."""
        extra_fields = {
            "type": "data_access",
            "resource_type": resource_type,
            "resource_id": resource_id,
            "user_id": user_id,
            "operation": operation,
            "success": success,
            "timestamp": datetime.utcnow().isoformat() + "Z",
            **kwargs,
        }

        self.logger.info(
            f"Data access: {operation} {resource_type}",
            extra={"extra_fields": extra_fields},
        )

    def log_ai_analysis(
        self,
        record_id: str,
        user_id: str,
        model: str,
        document_type: str,
        simulated: bool,
        success: bool,
        **kwargs,
    ) -> None:
        """Log a document analysis run."""
        extra_fields = {
            "type": "ai_analysis",
            "record_id": record_id,
            "user_id": user_id,
            "model": model,
            "document_type": document_type,
            "simulated": simulated,
            "success": success,
            "timestamp": datetime.utcnow().isoformat() + "Z",
            **kwargs,
        }

        self.logger.info(
            f"AI analysis: {document_type}", extra={"extra_fields": extra_fields}
        )

    def log_share(
        self,
        share_id: str,
        user_id: str,
        recipient_email: str,
        record_ids: list,
        method: str,
        success: bool,
        **kwargs,
    ) -> None:
        """Log disclosure of records to a third party."""
        extra_fields = {
            "type": "record_share",
            "share_id": share_id,
            "user_id": user_id,
            "recipient_email": recipient_email,
            "record_ids": record_ids,
            "method": method,
            "success": success,
            "timestamp": datetime.utcnow().isoformat() + "Z",
            **kwargs,
        }

        self.logger.info(
            f"Records shared via {method}", extra={"extra_fields": extra_fields}
        )


_configured = False


def setup_logging() -> None:
    """Configure application logging."""
    global _configured
    if _configured:
        return

    if settings.enable_structured_logging:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # File handler for the audit trail
    if settings.compliance_log_file:
        file_handler = logging.FileHandler(settings.compliance_log_file)
        file_handler.setFormatter(formatter)
        compliance_logger = logging.getLogger("compliance")
        compliance_logger.addHandler(file_handler)
        compliance_logger.setLevel(logging.INFO)

    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Get logger instance with proper configuration."""
    return logging.getLogger(name)


def get_latency_logger() -> LatencyLogger:
    """Get latency logger instance."""
    return LatencyLogger()


def get_compliance_logger() -> ComplianceLogger:
    """Get compliance logger instance."""
    return ComplianceLogger()


class RequestContext:
    """Context manager for request tracking."""

    def __init__(
        self,
        request_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ):
        self.request_id = request_id or str(uuid.uuid4())
        self.user_id = user_id
        self._tokens = []

    def __enter__(self):
        self._tokens.append(request_id_var.set(self.request_id))
        if self.user_id:
            self._tokens.append(user_id_var.set(self.user_id))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        for token in reversed(self._tokens):
            token.var.reset(token)
        self._tokens = []


_THRESHOLDS: Dict[str, int] = {
    "analysis": LatencyConfig.CRITICAL_ANALYSIS_LATENCY,
    "pdf": LatencyConfig.WARNING_PDF_LATENCY,
    "storage": LatencyConfig.WARNING_STORAGE_LATENCY,
}


def _check_threshold(operation: str, duration_ms: float) -> bool:
    """Check if operation duration exceeds its configured threshold."""
    for prefix, threshold in _THRESHOLDS.items():
        if operation.lower().startswith(prefix):
            return duration_ms > threshold
    return False


def monitor_latency(operation: str, component: Optional[str] = None):
    """Decorator to monitor operation latency with threshold checking."""

    def decorator(func):
        def _log(start_time: float, success: bool) -> None:
            duration_ms = (time.time() - start_time) * 1000
            get_latency_logger().log_latency(
                operation=operation,
                duration_ms=duration_ms,
                success=success,
                component=component,
                threshold_exceeded=_check_threshold(operation, duration_ms),
            )

        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            start_time = time.time()
            success = True
            try:
                return await func(*args, **kwargs)
            except Exception:
                success = False
                raise
            finally:
                _log(start_time, success)

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            start_time = time.time()
            success = True
            try:
                return func(*args, **kwargs)
            except Exception:
                success = False
                raise
            finally:
                _log(start_time, success)

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


# Initialize logging on module import
setup_logging()
