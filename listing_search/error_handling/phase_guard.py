"""
Phase guard for adapter calls.

Applies an explicit timeout to every blocking phase of a search and turns
adapter failures into the engine's error taxonomy, logging each failure
with enough context to diagnose it.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional, Type

from .errors import AdapterUnavailable, SearchError


logger = logging.getLogger(__name__)


@dataclass
class PhaseConfig:
    """
    Timeout configuration for one phase of a search.

    Attributes:
        name: Phase name used in logs and error messages
        timeout_ms: Timeout in milliseconds (0 or less disables it)
        error_class: Error raised when the phase fails
        recoverable: The caller has a fallback for this phase and reports
            the degradation itself, so failures are logged at DEBUG
    """
    name: str
    timeout_ms: int
    error_class: Type[AdapterUnavailable]
    recoverable: bool = False

    def get_timeout(self) -> Optional[float]:
        """
        Timeout in seconds for asyncio.wait_for.

        Returns:
            Timeout in seconds, or None when the timeout is disabled
        """
        if self.timeout_ms <= 0:
            return None
        return self.timeout_ms / 1000.0


class PhaseGuard:
    """
    Runs adapter operations under a per-phase timeout.

    Errors that are already part of the search taxonomy pass through
    unchanged. Anything else, timeouts included, is wrapped in the phase's
    error class with the original exception chained. Cancellation is never
    intercepted.
    """

    async def run(
        self,
        phase: PhaseConfig,
        operation: Callable[..., Awaitable[Any]],
        *args,
        **kwargs
    ) -> Any:
        """
        Execute an adapter operation inside a phase.

        Args:
            phase: Phase configuration (name, timeout, error class)
            operation: Async callable to execute
            *args: Positional arguments for the operation
            **kwargs: Keyword arguments for the operation

        Returns:
            Result of the operation

        Raises:
            SearchError: The operation's own search error, or the phase's
                error class wrapping any other failure
        """
        try:
            return await asyncio.wait_for(
                operation(*args, **kwargs),
                timeout=phase.get_timeout()
            )
        except SearchError as e:
            self._log_error(phase, operation, e)
            raise
        except asyncio.TimeoutError as e:
            self._log_error(phase, operation, e)
            raise phase.error_class(
                f"{phase.name} phase timed out after {phase.timeout_ms}ms",
                phase=phase.name
            ) from e
        except Exception as e:
            self._log_error(phase, operation, e)
            raise phase.error_class(
                f"{phase.name} phase failed: {type(e).__name__}: {e}",
                phase=phase.name
            ) from e

    def _log_error(
        self,
        phase: PhaseConfig,
        operation: Callable,
        error: BaseException
    ) -> None:
        """
        Log a phase failure with timestamp, context, and diagnostic data.

        Args:
            phase: Phase that failed
            operation: Operation that was running
            error: The exception that occurred
        """
        operation_name = getattr(operation, "__name__", repr(operation))
        context: Dict[str, Any] = {
            'timestamp': datetime.now().isoformat(),
            'phase': phase.name,
            'operation': operation_name,
            'timeout_ms': phase.timeout_ms,
            'error_type': type(error).__name__,
            'error_message': str(error),
        }

        log = logger.debug if phase.recoverable else logger.warning
        log(
            f"Phase failed: {phase.name} | "
            f"Operation: {operation_name} | "
            f"Error: {type(error).__name__}: {error}"
        )
        logger.debug(f"Full error context: {context}")
