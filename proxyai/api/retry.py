# proxyai/api/retry.py
"""
Authorization retry policy for proxyai requests.

A request whose authorization is rejected upstream is re-authorized and sent
again exactly once. No other failure is retried automatically.
"""

import logging
from functools import wraps
from typing import Any, Callable, Dict, Optional, Set

import requests

from ..constants import AUTH_EXPIRED_STATUS_CODES
from ..exceptions import AuthorizationDenied

logger = logging.getLogger(__name__)


class RetryHandler:
    """
    Retry-once policy for expired or rejected authorizations.

    The handler decides whether a response warrants a fresh authorization and
    keeps statistics about how often that happens. Attempts are numbered from 1.

    Args:
        max_retries (int): Re-authorized attempts allowed per request. Defaults to 1.
        retryable_status_codes (Set[int]): Status codes that trigger re-authorization.
            Defaults to ``{401}``.

    Attributes:
        total_retries (int): Re-authorized attempts across all requests
        successful_retries (int): Re-authorized attempts that were accepted
        failed_retries (int): Re-authorized attempts that were rejected again

    Example:
        Drive a request through the policy::

            handler = RetryHandler()

            def attempt(number):
                authorization = provider.resolve_authorization(force_refresh=number > 1)
                return session.send(builder.build(descriptor, authorization))

            response = handler.execute_with_retry(attempt)
    """

    def __init__(
        self,
        max_retries: int = 1,
        retryable_status_codes: Optional[Set[int]] = None
    ):
        if max_retries < 0:
            raise ValueError("max_retries must be non-negative")

        self.max_retries = max_retries
        self.retryable_status_codes = set(retryable_status_codes or AUTH_EXPIRED_STATUS_CODES)

        # Statistics tracking
        self.total_retries = 0
        self.successful_retries = 0
        self.failed_retries = 0
        self._request_count = 0

        logger.debug(f"Initialized retry handler: max_retries={max_retries}")

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def is_auth_rejection(self, response: requests.Response) -> bool:
        return response.status_code in self.retryable_status_codes

    def should_retry(self, response: requests.Response, attempt: int) -> bool:
        """
        Whether ``response`` to attempt number ``attempt`` warrants a re-authorized retry.

        Args:
            response (requests.Response): Response to the attempt
            attempt (int): Attempt number (1-based)

        Returns:
            bool: True if the request should be re-authorized and sent again
        """
        if not self.is_auth_rejection(response):
            return False
        if attempt > self.max_retries:
            logger.debug(f"HTTP {response.status_code} on attempt {attempt}: retries exhausted")
            return False
        logger.debug(f"HTTP {response.status_code} on attempt {attempt}: re-authorizing")
        return True

    def execute_with_retry(
        self,
        send: Callable[[int], requests.Response],
        on_retry: Optional[Callable[[requests.Response], None]] = None
    ) -> requests.Response:
        """
        Send a request, re-authorizing once on rejection.

        Args:
            send: Called with the attempt number; resolves an authorization,
                builds and sends the request, and returns the response
            on_retry: Called with the rejected response before the next attempt

        Returns:
            requests.Response: The first response that is not an authorization
            rejection, or the rejection itself if retries are disabled

        Raises:
            AuthorizationDenied: If the re-authorized attempt is rejected as well
        """
        self._request_count += 1

        for attempt in range(1, self.max_attempts + 1):
            response = send(attempt)

            if not self.is_auth_rejection(response):
                if attempt > 1:
                    self.successful_retries += 1
                    logger.info(f"Request accepted after re-authorization (attempt {attempt})")
                return response

            if self.should_retry(response, attempt):
                self.total_retries += 1
                logger.warning(f"Authorization rejected with HTTP {response.status_code}, re-authorizing")
                if on_retry is not None:
                    on_retry(response)
                continue

            if attempt == 1:
                # Retries disabled; the caller classifies the rejection
                return response

            self.failed_retries += 1
            response.close()
            logger.error(f"Authorization rejected again after {self.max_retries} re-authorization(s)")
            raise AuthorizationDenied(
                f"Authorization rejected after re-authorization (HTTP {response.status_code})",
                status_code=response.status_code,
                reason="rejected_after_refresh"
            )

        raise AssertionError("unreachable")

    def retry_on_rejection(self, send: Callable[[int], requests.Response]) -> Callable[[], requests.Response]:
        """
        Decorator form of ``execute_with_retry``.

        Example:
            >>> @handler.retry_on_rejection
            ... def send(attempt):
            ...     return session.send(build(attempt))
            >>> response = send()
        """
        @wraps(send)
        def wrapper() -> requests.Response:
            return self.execute_with_retry(send)
        return wrapper

    def get_statistics(self) -> Dict[str, Any]:
        """
        Get retry handler statistics.

        Returns:
            Dict[str, Any]: Request and re-authorization counts
        """
        total_requests = self._request_count
        return {
            "total_requests": total_requests,
            "total_retries": self.total_retries,
            "successful_retries": self.successful_retries,
            "failed_retries": self.failed_retries,
            "retry_rate": self.total_retries / total_requests if total_requests > 0 else 0.0,
            "max_retries": self.max_retries,
            "retryable_status_codes": sorted(self.retryable_status_codes),
        }

    def reset_statistics(self):
        """Reset retry statistics counters."""
        self.total_retries = 0
        self.successful_retries = 0
        self.failed_retries = 0
        self._request_count = 0
        logger.debug("Retry statistics reset")

    def __repr__(self) -> str:
        return (
            f"RetryHandler(max_retries={self.max_retries}, "
            f"retryable_status_codes={sorted(self.retryable_status_codes)})"
        )
