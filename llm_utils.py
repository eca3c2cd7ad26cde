import time
import logging
from typing import Optional, Callable, Any, Dict

from errors import UpstreamUnavailable


class LLMCircuitBreaker:
    """Circuit breaker for LLM calls; fails fast while the provider is unhealthy"""

    def __init__(self, failure_threshold: int = 3, timeout: int = 300, half_open_max_calls: int = 2):
        self.failure_threshold = failure_threshold
        self.timeout = timeout  # seconds
        self.half_open_max_calls = half_open_max_calls

        self.failure_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = 'CLOSED'  # CLOSED, OPEN, HALF_OPEN
        self.half_open_calls = 0

        self.logger = logging.getLogger(__name__)

    def call(self, llm_function: Callable, *args, **kwargs) -> Any:
        """Execute LLM function with circuit breaker protection"""

        if self.state == 'OPEN':
            if self._should_attempt_reset():
                self.state = 'HALF_OPEN'
                self.half_open_calls = 0
                self.logger.info("Circuit breaker transitioning to HALF_OPEN")
            else:
                self.logger.warning("Circuit breaker is OPEN, refusing LLM call")
                raise UpstreamUnavailable("LLM circuit open", service='llm')

        if self.state == 'HALF_OPEN':
            if self.half_open_calls >= self.half_open_max_calls:
                self.logger.warning("Half-open max calls exceeded, refusing LLM call")
                raise UpstreamUnavailable("LLM circuit half-open limit reached", service='llm')
            self.half_open_calls += 1

        try:
            self.logger.info(f"Attempting LLM call, circuit state: {self.state}")
            result = llm_function(*args, **kwargs)
        except Exception as e:
            self.logger.error(f"LLM call failed: {str(e)[:200]}")
            self._record_failure()
            raise UpstreamUnavailable("LLM call failed", service='llm') from e

        if self.state == 'HALF_OPEN':
            self.logger.info("Circuit breaker reset to CLOSED after successful half-open call")
        self.state = 'CLOSED'
        self.failure_count = 0
        return result

    def _record_failure(self):
        self.failure_count += 1
        self.last_failure_time = time.time()

        if self.state == 'HALF_OPEN':
            self.state = 'OPEN'
            self.logger.warning("Half-open call failed, circuit breaker returning to OPEN")
        elif self.failure_count >= self.failure_threshold:
            self.state = 'OPEN'
            self.logger.error(f"Circuit breaker OPENED after {self.failure_count} failures")

    def _should_attempt_reset(self) -> bool:
        """Check if enough time has passed to attempt reset"""
        if self.last_failure_time is None:
            return True
        return time.time() - self.last_failure_time > self.timeout

    def get_status(self) -> Dict[str, Any]:
        return {
            'state': self.state,
            'failure_count': self.failure_count,
            'last_failure_time': self.last_failure_time,
            'time_until_retry': max(0, self.timeout - (time.time() - (self.last_failure_time or 0)))
        }


# Shared by every recommendations request in this process
recommendation_breaker = LLMCircuitBreaker(failure_threshold=3, timeout=300)
