"""
Health verification against the deployed service's health endpoint.

The service answers ``GET /api/health`` with
``200 {"status": "OK", "timestamp": <ISO-8601>, "service": <name>}``.
Anything else (non-2xx, malformed body, connection error) is unhealthy.
"""
import logging
import time
from datetime import datetime, timezone
from typing import Callable, Optional

import requests

from bike_deploy.errors import HealthTimeout
from bike_deploy.models import HealthReport, HealthStatus

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _is_iso_timestamp(value) -> bool:
    if not isinstance(value, str) or not value:
        return False
    try:
        datetime.fromisoformat(value.replace('Z', '+00:00'))
        return True
    except ValueError:
        return False


class HealthVerifier:
    """Polls a health endpoint at a fixed interval until healthy or timed out.

    ``clock`` and ``sleep`` are injectable so the timing contract can be
    tested without waiting.
    """

    def __init__(self, session: Optional[requests.Session] = None,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep,
                 request_timeout: float = 5.0,
                 expected_service: Optional[str] = None):
        self.session = session or requests.Session()
        self.clock = clock
        self.sleep = sleep
        self.request_timeout = request_timeout
        self.expected_service = expected_service

    def check_once(self, url: str, timeout: Optional[float] = None) -> HealthReport:
        """Single bounded request, classified into a HealthReport."""
        try:
            response = self.session.get(url, timeout=timeout or self.request_timeout)
        except requests.RequestException as e:
            return HealthReport(status=HealthStatus.UNKNOWN, timestamp=_now_iso(),
                                detail=f"request failed: {e}")

        if not 200 <= response.status_code < 300:
            return HealthReport(status=HealthStatus.UNHEALTHY, timestamp=_now_iso(),
                                http_status=response.status_code,
                                detail=f"HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError:
            return HealthReport(status=HealthStatus.UNHEALTHY, timestamp=_now_iso(),
                                http_status=response.status_code, detail="body is not JSON")

        if not isinstance(body, dict):
            return HealthReport(status=HealthStatus.UNHEALTHY, timestamp=_now_iso(),
                                http_status=response.status_code, detail="body is not an object")

        service = body.get('service')
        problems = []
        if str(body.get('status', '')).upper() != 'OK':
            problems.append(f"status={body.get('status')!r}")
        if not _is_iso_timestamp(body.get('timestamp')):
            problems.append("timestamp missing or not ISO-8601")
        if not isinstance(service, str) or not service:
            problems.append("service missing")
        elif self.expected_service and service != self.expected_service:
            problems.append(f"unexpected service {service!r}")

        if problems:
            return HealthReport(status=HealthStatus.UNHEALTHY, timestamp=_now_iso(),
                                service=service if isinstance(service, str) else None,
                                http_status=response.status_code, detail="; ".join(problems))

        return HealthReport(status=HealthStatus.HEALTHY, timestamp=body['timestamp'],
                            service=service, http_status=response.status_code)

    def wait_healthy(self, url: str, timeout: float = 60.0, interval: float = 5.0) -> HealthReport:
        """Poll until the first healthy report.

        Polls are scheduled every ``interval`` seconds from the start of the
        window, whatever each request took. No poll starts at or after the
        deadline and each request's timeout is capped to what is left of the
        window, so a failure is raised exactly at the timeout boundary.

        Raises:
            HealthTimeout: no healthy report inside the window
        """
        logger.info(f"🩺 Waiting for {url} to report healthy (timeout {timeout:.0f}s, every {interval:.0f}s)")
        start = self.clock()
        deadline = start + timeout
        polls = 0
        report = None

        while True:
            remaining = deadline - self.clock()
            if remaining <= 0:
                break
            report = self.check_once(url, timeout=min(self.request_timeout, remaining))
            polls += 1
            if report.healthy:
                elapsed = self.clock() - start
                logger.info(f"✅ {report.service} healthy after {polls} poll(s), {elapsed:.1f}s")
                return report

            logger.info(f"Poll {polls}: {report.status.value} ({report.detail})")
            next_poll = start + polls * interval
            wait = min(next_poll, deadline) - self.clock()
            if wait > 0:
                self.sleep(wait)

        logger.error(f"❌ {url} did not become healthy within {timeout:.0f}s")
        raise HealthTimeout(url, timeout, last_report=report, polls=polls)
