# backend/app/services/base.py
"""
Base Service Pattern for the registration engine.

Provides common functionality for all service classes including:
- Logging
- Performance monitoring (sync and async operations)
- Per-class operation statistics

Services never hold a database session; data access goes through the
repositories of a UnitOfWork.
"""

import asyncio
from functools import wraps
import logging
import time
from typing import Any, Callable, Dict, TypeVar, cast

from ..monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

SLOW_OPERATION_SECONDS = 1.0


class BaseService:
    """
    Base class for all service layer components.

    Provides common patterns for:
    - Logging
    - Performance monitoring
    """

    # Class-level metrics storage
    _class_metrics: Dict[str, Dict[str, Dict[str, Any]]] = {}

    def __init__(self) -> None:
        self.logger = logging.getLogger(self.__class__.__name__)

    @staticmethod
    def measure_operation(operation_name: str) -> Callable[[F], F]:
        """
        Decorator to measure operation performance.

        Usage:
            @BaseService.measure_operation("process_registration")
            async def process_registration(self, data, user_id):
                ...

        Works for both plain and coroutine methods.
        """

        def decorator(func: F) -> F:
            func._operation_name = operation_name  # type: ignore[attr-defined]
            func._is_measured = True  # type: ignore[attr-defined]

            if not asyncio.iscoroutinefunction(func):

                @wraps(func)
                def wrapper(self, *args, **kwargs):
                    start_time = time.time()
                    error_type = None
                    try:
                        return func(self, *args, **kwargs)
                    except Exception as e:
                        error_type = type(e).__name__
                        raise
                    finally:
                        _finish_measurement(self, operation_name, start_time, error_type)

                return cast(F, wrapper)

            @wraps(func)
            async def async_wrapper(self, *args, **kwargs):
                start_time = time.time()
                error_type = None
                try:
                    return await func(self, *args, **kwargs)
                except Exception as e:
                    error_type = type(e).__name__
                    raise
                finally:
                    _finish_measurement(self, operation_name, start_time, error_type)

            return cast(F, async_wrapper)

        return decorator

    def log_operation(self, operation: str, **context: Any) -> None:
        """
        Log an operation with context.

        Use @measure_operation for timing; this only logs.
        """
        self.logger.info(f"Operation: {operation}", extra={"operation": operation, **context})

    def _record_metric(self, operation: str, elapsed: float, success: bool) -> None:
        class_name = self.__class__.__name__
        metrics = BaseService._class_metrics.setdefault(class_name, {})

        if operation not in metrics:
            metrics[operation] = {
                "count": 0,
                "total_time": 0.0,
                "success_count": 0,
                "failure_count": 0,
                "min_time": float("inf"),
                "max_time": 0.0,
            }

        metric_data = metrics[operation]
        metric_data["count"] += 1
        metric_data["total_time"] += elapsed
        metric_data["min_time"] = min(metric_data["min_time"], elapsed)
        metric_data["max_time"] = max(metric_data["max_time"], elapsed)

        if success:
            metric_data["success_count"] += 1
        else:
            metric_data["failure_count"] += 1

    def get_metrics(self) -> Dict[str, Dict[str, Any]]:
        """
        Get performance metrics for this service.

        Returns:
            Dictionary of operation metrics with average time and success rate
        """
        metrics = BaseService._class_metrics.get(self.__class__.__name__, {})
        result: Dict[str, Dict[str, Any]] = {}
        for operation, data in metrics.items():
            count = data["count"]
            result[operation] = {
                **data,
                "avg_time": data["total_time"] / count if count else 0.0,
                "success_rate": data["success_count"] / count if count else 0.0,
            }
        return result


def _finish_measurement(
    service: Any, operation_name: str, start_time: float, error_type: str | None
) -> None:
    elapsed = time.time() - start_time
    success = error_type is None

    if hasattr(service, "_record_metric"):
        service._record_metric(operation_name, elapsed, success)

    # Only log if it's actually slow
    if elapsed > SLOW_OPERATION_SECONDS:
        getattr(service, "logger", logger).warning(
            f"Slow operation detected: {operation_name} took {elapsed:.2f}s"
        )

    prometheus_metrics.record_service_operation(
        service=service.__class__.__name__,
        operation=operation_name,
        duration=elapsed,
        status="success" if success else "error",
        error_type=error_type,
    )
