"""
Malware scanning of attachments through the VirusTotal v3 API.

A file is uploaded once, then its analysis is polled a bounded number of
times with a fixed pause in between. The pause is an ``asyncio`` sleep and
the HTTP calls run in the default executor, so a pending scan only suspends
its own request.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Any, Awaitable, Callable, Optional

import requests

from ...common.config import ScanSettings

logger = logging.getLogger(__name__)

HTTP_TOO_MANY_REQUESTS = 429


class ScanOutcome(str, Enum):
    """Classification of a scan."""

    CLEAN = "clean"
    MALICIOUS = "malicious"
    QUOTA_EXCEEDED = "quota_exceeded"
    ERROR = "error"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class ScanVerdict:
    """Outcome of one scan, with whatever the service reported."""

    outcome: ScanOutcome
    reason: Optional[str] = None
    analysis_id: Optional[str] = None
    malicious_count: int = 0
    attempts: int = 0

    @classmethod
    def clean(cls, **kwargs: Any) -> "ScanVerdict":
        return cls(ScanOutcome.CLEAN, **kwargs)

    @classmethod
    def malicious(cls, count: int, **kwargs: Any) -> "ScanVerdict":
        return cls(ScanOutcome.MALICIOUS, malicious_count=count, **kwargs)

    @classmethod
    def quota_exceeded(cls, **kwargs: Any) -> "ScanVerdict":
        return cls(ScanOutcome.QUOTA_EXCEEDED, **kwargs)

    @classmethod
    def error(cls, reason: str, **kwargs: Any) -> "ScanVerdict":
        return cls(ScanOutcome.ERROR, reason=reason, **kwargs)

    @classmethod
    def timed_out(cls, attempts: int, **kwargs: Any) -> "ScanVerdict":
        return cls(ScanOutcome.TIMED_OUT, attempts=attempts, **kwargs)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "outcome": self.outcome.value,
            "reason": self.reason,
            "analysis_id": self.analysis_id,
            "malicious_count": self.malicious_count,
            "attempts": self.attempts,
        }


class _QuotaExhausted(Exception):
    pass


class MalwareScanner:
    """
    VirusTotal client producing a ``ScanVerdict`` for a file.

    Attributes:
        max_attempts: Maximum number of report polls.
        poll_interval: Seconds to wait between polls.
    """

    DEFAULT_BASE_URL = "https://www.virustotal.com/api/v3"
    DEFAULT_MAX_ATTEMPTS = 10
    DEFAULT_POLL_INTERVAL = 2.0
    DEFAULT_TIMEOUT = 30

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        request_timeout: int = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.max_attempts = max_attempts
        self.poll_interval = poll_interval
        self.request_timeout = request_timeout
        self.session = session or requests.Session()
        self.session.headers.update({"x-apikey": api_key, "accept": "application/json"})
        self._sleep = sleep

        logger.info(
            "MalwareScanner initialized with base_url=%s, max_attempts=%d, poll_interval=%.1fs",
            self.base_url,
            max_attempts,
            poll_interval,
        )

    async def _call(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        loop = asyncio.get_running_loop()
        response = await loop.run_in_executor(
            None,
            partial(
                self.session.request,
                method,
                url,
                timeout=self.request_timeout,
                **kwargs,
            ),
        )

        if response.status_code == HTTP_TOO_MANY_REQUESTS:
            raise _QuotaExhausted()

        response.raise_for_status()
        return response.json()

    async def submit(self, filename: str, content: bytes) -> str:
        """Upload a file and return the analysis identifier."""
        payload = await self._call(
            "POST",
            f"{self.base_url}/files",
            files={"file": (filename, content)},
        )
        try:
            return payload["data"]["id"]
        except (KeyError, TypeError):
            raise ValueError("analysis id missing from upload response")

    async def fetch_report(self, analysis_id: str) -> dict[str, Any]:
        """Return the ``attributes`` block of an analysis."""
        payload = await self._call(
            "GET", f"{self.base_url}/analyses/{analysis_id}")
        return payload.get("data", {}).get("attributes", {})

    async def scan(self, filename: str, content: bytes) -> ScanVerdict:
        """
        Scan a file and classify the result.

        Args:
            filename: Name reported to the service.
            content: File bytes. They are not kept after the call.

        Returns:
            ScanVerdict. This method does not raise for service failures.
        """
        analysis_id: Optional[str] = None
        try:
            analysis_id = await self.submit(filename, content)
            logger.debug("Submitted %s for scanning, analysis=%s", filename, analysis_id)

            for attempt in range(1, self.max_attempts + 1):
                report = await self.fetch_report(analysis_id)
                if report.get("status") == "completed":
                    malicious = int(report.get("stats", {}).get("malicious", 0))
                    if malicious > 0:
                        logger.warning(
                            "Malware detected in %s (%d engines)", filename, malicious)
                        return ScanVerdict.malicious(
                            malicious, analysis_id=analysis_id, attempts=attempt)

                    logger.info("Scan of %s completed clean", filename)
                    return ScanVerdict.clean(analysis_id=analysis_id, attempts=attempt)

                if attempt < self.max_attempts:
                    await self._sleep(self.poll_interval)

            logger.warning(
                "Scan of %s did not complete after %d attempts",
                filename,
                self.max_attempts,
            )
            return ScanVerdict.timed_out(self.max_attempts, analysis_id=analysis_id)

        except _QuotaExhausted:
            logger.error("Scanning quota exhausted while scanning %s", filename)
            return ScanVerdict.quota_exceeded(analysis_id=analysis_id)

        except (requests.RequestException, ValueError) as e:
            logger.error("Scan of %s failed: %s", filename, e)
            return ScanVerdict.error(str(e), analysis_id=analysis_id)


def create_malware_scanner(settings: ScanSettings) -> Optional[MalwareScanner]:
    """
    Build a scanner from settings.

    Returns:
        A scanner, or None when scanning is disabled or has no API key.
    """
    if not settings.active:
        return None

    return MalwareScanner(
        api_key=settings.api_key.get_secret_value(),
        base_url=settings.base_url,
        max_attempts=settings.max_attempts,
        poll_interval=settings.poll_interval,
        request_timeout=settings.request_timeout,
    )
