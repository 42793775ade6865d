"""
HTTP adapter — health probes and webhook posts.

Only a 2xx response is a success. Non-2xx responses and connection
errors both come back as failed receipts carrying ``status_code``
(0 when no response was received).
"""

from __future__ import annotations

import json
import logging
import time
import urllib.error
import urllib.request

from deployline import __version__
from deployline.adapters.base import Adapter, ExecutionContext
from deployline.core.models.action import Receipt

logger = logging.getLogger(__name__)


class HttpAdapter(Adapter):
    """HTTP requests.

    Action operations and params:
        get   url, timeout
        post  url, payload (JSON-serialisable), timeout
    """

    _OPERATIONS = {"get", "post"}

    @property
    def name(self) -> str:
        return "http"

    def is_available(self) -> bool:
        return True

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        operation = context.action.operation or "get"
        if operation not in self._OPERATIONS:
            return False, f"Unknown operation '{operation}'. Valid: get, post"
        url = context.params.get("url", "")
        if not url:
            return False, "Missing required param: 'url'"
        if not url.startswith(("http://", "https://")):
            return False, f"Unsupported URL scheme: {url}"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        url = context.params["url"]
        timeout = context.params.get("timeout", context.action.timeout)
        headers = {"User-Agent": f"deployline/{__version__}", "Accept": "application/json"}

        data = None
        method = "GET"
        if context.action.operation == "post":
            method = "POST"
            data = json.dumps(context.params.get("payload", {})).encode("utf-8")
            headers["Content-Type"] = "application/json"

        req = urllib.request.Request(url, data=data, method=method, headers=headers)
        start = time.monotonic()

        try:
            with urllib.request.urlopen(req, timeout=timeout) as resp:
                status = resp.status
                body = resp.read().decode("utf-8", errors="replace")
        except urllib.error.HTTPError as e:
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=f"HTTP {e.code} from {url}",
                duration_ms=int((time.monotonic() - start) * 1000),
                metadata={"url": url, "status_code": e.code},
            )
        except Exception as e:
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=f"{method} {url} failed: {e}",
                duration_ms=int((time.monotonic() - start) * 1000),
                metadata={"url": url, "status_code": 0},
            )

        elapsed_ms = int((time.monotonic() - start) * 1000)
        metadata = {"url": url, "status_code": status, "body": _parse_body(body)}
        if 200 <= status < 300:
            return Receipt.success(
                adapter=self.name,
                action_id=context.action.id,
                output=body,
                duration_ms=elapsed_ms,
                metadata=metadata,
            )
        return Receipt.failure(
            adapter=self.name,
            action_id=context.action.id,
            error=f"HTTP {status} from {url}",
            duration_ms=elapsed_ms,
            metadata=metadata,
        )


def _parse_body(body: str) -> dict | str:
    # Health contract is {status, timestamp, uptime, version}; keep raw text otherwise
    try:
        data = json.loads(body)
    except ValueError:
        return body[:500]
    return data if isinstance(data, dict) else body[:500]
