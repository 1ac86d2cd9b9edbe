"""
Address resolution clients.

A resolver turns raw address text into a ResolvedAddress. Two outcomes are
not results:

* ``None`` means the address is unresolvable (semantic failure). Final,
  never retried.
* ``TransientResolutionError`` means the service could not answer right
  now. RetryingResolver retries those according to a RetryPolicy.
"""

import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import requests

from .logger import StructuredLogger, get_logger
from .retry import RetryError, RetryPolicy, is_transient_error, retry_call, should_retry_http_status
from .schema import (
    AddressComponents,
    Coordinate,
    ResolvedAddress,
    validate_resolution_payload,
)

PERMANENT_FAILURE_MARKER = "FAIL_PERMANENT"
TRANSIENT_FAILURE_MARKER = "FAIL_TRANSIENT"


class TransientResolutionError(Exception):
    """The resolution service is temporarily unable to answer."""


class Resolver(ABC):
    @abstractmethod
    def resolve(self, raw_address: str) -> Optional[ResolvedAddress]:
        """Resolve raw text, None if unresolvable. May raise TransientResolutionError."""


class MockResolver(Resolver):
    """
    Deterministic stand-in for the geocoding provider.

    Every address resolves to 123 Main St, in New York when the text
    mentions the US (``USA``, ``US`` or ``NY`` as a word) and in Berlin
    otherwise. ``FAIL_PERMANENT`` in the text makes the address
    unresolvable; ``FAIL_TRANSIENT`` makes the simulated upstream fail
    ``transient_failures`` times for that text before answering.
    """

    US_TOKENS = {"USA", "US", "NY"}

    def __init__(self, transient_failures: int = 2, latency: float = 0.0):
        self.transient_failures = transient_failures
        self.latency = latency
        self._upstream_failures: Dict[str, int] = {}

    def resolve(self, raw_address: str) -> Optional[ResolvedAddress]:
        if self.latency:
            time.sleep(self.latency)

        if PERMANENT_FAILURE_MARKER in raw_address:
            return None

        if TRANSIENT_FAILURE_MARKER in raw_address:
            seen = self._upstream_failures.get(raw_address, 0)
            if seen < self.transient_failures:
                self._upstream_failures[raw_address] = seen + 1
                raise TransientResolutionError("Transient 503")

        tokens = set(re.split(r"[^A-Z0-9]+", raw_address.upper()))
        is_us = bool(tokens & self.US_TOKENS)

        return ResolvedAddress(
            formatted=raw_address.strip().upper(),
            components=AddressComponents(
                street="Main St",
                number="123",
                city="New York" if is_us else "Berlin",
                postal_code="10001" if is_us else "10115",
                country_code="US" if is_us else "DE",
            ),
            location=Coordinate(
                lat=40.7128 if is_us else 52.5200,
                lng=-74.0060 if is_us else 13.4050,
            ),
            precision="ROOFTOP",
        )


class HttpResolver(Resolver):
    """
    Resolver backed by an HTTP resolution service.

    GET {base_url}/resolve?address=<raw text> is expected to answer 200 with
    {"formatted", "components", "location", "type"}, 404/422 when the address
    cannot be resolved, and 408/429/5xx when it is overloaded.
    """

    UNRESOLVABLE_STATUSES = {404, 422}

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        api_key: Optional[str] = None,
        logger: Optional[StructuredLogger] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.api_key = api_key
        self.logger = logger or get_logger()

    def resolve(self, raw_address: str) -> Optional[ResolvedAddress]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            resp = requests.get(
                f"{self.base_url}/resolve",
                params={"address": raw_address},
                headers=headers,
                timeout=self.timeout,
            )
        except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
            raise TransientResolutionError(f"Resolver unreachable: {e}") from e
        except requests.exceptions.RequestException as e:
            if is_transient_error(e):
                raise TransientResolutionError(f"Resolver request failed: {e}") from e
            raise

        if should_retry_http_status(resp.status_code):
            raise TransientResolutionError(f"Resolver answered {resp.status_code}")
        if resp.status_code in self.UNRESOLVABLE_STATUSES:
            return None
        resp.raise_for_status()

        try:
            data = resp.json()
        except ValueError:
            self.logger.warning("Resolver returned non-JSON body", status=resp.status_code)
            return None

        if not data:
            return None

        errors = validate_resolution_payload(data)
        if errors:
            self.logger.warning("Resolver payload rejected", errors=errors)
            return None

        return ResolvedAddress.from_payload(data)


@dataclass(frozen=True)
class ResolutionAttempt:
    """Outcome of resolving one address under a retry policy."""

    result: Optional[ResolvedAddress]
    attempts: int
    exhausted: bool = False

    @property
    def resolved(self) -> bool:
        return self.result is not None


class RetryingResolver:
    """Applies a RetryPolicy to transient failures of a wrapped resolver."""

    def __init__(
        self,
        resolver: Resolver,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
        logger: Optional[StructuredLogger] = None,
    ):
        self.resolver = resolver
        self.policy = policy or RetryPolicy()
        self.sleep = sleep
        self.logger = logger or get_logger()

    def resolve(self, raw_address: str) -> ResolutionAttempt:
        attempts = 0

        def call():
            nonlocal attempts
            attempts += 1
            self.logger.record_resolver_call()
            return self.resolver.resolve(raw_address)

        def on_retry(attempt, exc, delay):
            self.logger.record_retry()
            self.logger.debug(
                "Transient resolver failure, backing off",
                attempt=attempt,
                delay=delay,
                error=str(exc),
            )

        try:
            result = retry_call(
                call,
                self.policy,
                exceptions=(TransientResolutionError,),
                on_retry=on_retry,
                sleep=self.sleep,
            )
        except RetryError as e:
            self.logger.record_exhausted()
            self.logger.warning(
                "Resolver retries exhausted",
                attempts=e.attempts,
                error=str(e.last_exception),
            )
            return ResolutionAttempt(result=None, attempts=attempts, exhausted=True)

        return ResolutionAttempt(result=result, attempts=attempts)
