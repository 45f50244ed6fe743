# reporting.py
from __future__ import annotations

import json
import urllib.error
import urllib.request
from pathlib import Path
from typing import Callable, Optional
from urllib.parse import urlencode

from .errors import ReportError

USER_AGENT = "onpush"


class ReportClient:
    """HTTP client for the external reporting endpoints (coverage, metrics)."""

    def __init__(self, opener: Optional[Callable] = None, timeout: float = 60.0):
        """
        Args:
            opener: Callable with the signature of urllib.request.urlopen.
                    Defaults to urlopen; tests pass a fake.
            timeout: Socket timeout in seconds for each request
        """
        self._open = opener or urllib.request.urlopen
        self.timeout = timeout

    def _request(
        self,
        method: str,
        url: str,
        data: Optional[bytes] = None,
        headers: Optional[dict] = None,
    ) -> str:
        """
        Make an HTTP request and return the response body.

        Raises:
            ReportError: on HTTP errors (non-2xx) and network failures.
        """
        req_headers = {"User-Agent": USER_AGENT}
        if headers:
            req_headers.update(headers)

        req = urllib.request.Request(url, data=data, headers=req_headers, method=method)

        try:
            with self._open(req, timeout=self.timeout) as response:
                status = getattr(response, "status", 200)
                body = response.read().decode("utf-8", errors="replace")
        except urllib.error.HTTPError as e:
            error_body = e.read().decode("utf-8", errors="replace") if e.fp else ""
            raise ReportError(f"{method} {_redact(url)} failed: {e.code} {e.reason}. {error_body}".strip())
        except urllib.error.URLError as e:
            raise ReportError(f"Network error for {_redact(url)}: {e.reason}")
        except OSError as e:
            raise ReportError(f"Network error for {_redact(url)}: {e}")

        if not 200 <= status < 300:
            raise ReportError(f"{method} {_redact(url)} failed: HTTP {status}. {body}".strip())
        return body

    def post_json(self, url: str, payload: dict) -> str:
        data = json.dumps(payload).encode("utf-8")
        return self._request("POST", url, data=data, headers={"Content-Type": "application/json"})

    def post_metric(self, url: str, name: str, percent: str) -> str:
        """Submit a documentation coverage value: {"name": ..., "percent": ...}."""
        return self.post_json(url, {"name": name, "percent": percent})

    def upload_coverage(
        self,
        base_url: str,
        token: str,
        report: str | Path,
        *,
        commit: str,
        branch: str,
        service: str = "onpush",
    ) -> str:
        """
        Upload a coverage report to a codecov-compatible endpoint.

        The token travels as a query parameter, so URLs are redacted in any
        error raised from here.
        """
        if not token:
            raise ReportError("coverage upload requires a token (CODECOV_TOKEN is not set)")
        report_path = Path(report)
        try:
            body = report_path.read_bytes()
        except OSError as e:
            raise ReportError(f"cannot read coverage report {report_path}: {e}")

        query = urlencode({"token": token, "commit": commit, "branch": branch, "service": service})
        url = f"{base_url.rstrip('/')}/upload/v2?{query}"
        return self._request(
            "POST",
            url,
            data=body,
            headers={"Content-Type": "text/plain", "Accept": "text/plain"},
        )


def _redact(url: str) -> str:
    base, sep, _query = url.partition("?")
    return f"{base}?..." if sep else base
