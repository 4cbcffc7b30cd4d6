from __future__ import annotations

import json
import logging
import time
import urllib.error
import urllib.parse
import urllib.request
from typing import Any

logger = logging.getLogger(__name__)


class IntegrationError(RuntimeError):
    pass


class IntegrationRateLimited(IntegrationError):
    pass


class IntegrationNotConfigured(IntegrationError):
    pass


def build_url(base_url: str, path: str, params: dict[str, Any] | None = None) -> str:
    url = base_url.rstrip("/") + path
    if params:
        url += "?" + urllib.parse.urlencode({k: v for k, v in params.items() if v is not None})
    return url


def request_json(
    url: str,
    *,
    method: str = "GET",
    headers: dict[str, str] | None = None,
    body: Any = None,
    form: dict[str, str] | None = None,
    timeout_seconds: int = 30,
    retries: int = 2,
    service: str = "remote service",
) -> tuple[Any, dict[str, str]]:
    """
    Send one JSON (or form-encoded) request and decode the JSON reply.

    Returns ``(decoded_body, response_headers)``. 429s and transport errors
    are retried with a short backoff; other HTTP errors fail immediately.
    """
    data: bytes | None = None
    hdrs = {"Accept": "application/json"}
    if body is not None:
        data = json.dumps(body).encode("utf-8")
        hdrs["Content-Type"] = "application/json"
    elif form is not None:
        data = urllib.parse.urlencode(form).encode("utf-8")
        hdrs["Content-Type"] = "application/x-www-form-urlencoded"
    hdrs.update(headers or {})

    last_err: Exception | None = None
    for attempt in range(retries + 1):
        try:
            req = urllib.request.Request(url, data=data, method=method)
            for k, v in hdrs.items():
                req.add_header(k, v)
            with urllib.request.urlopen(req, timeout=timeout_seconds) as resp:
                raw = resp.read()
                resp_headers = {k.lower(): v for k, v in resp.headers.items()}
                if not raw:
                    return None, resp_headers
                try:
                    return json.loads(raw.decode("utf-8")), resp_headers
                except ValueError as e:
                    raise IntegrationError(f"Invalid JSON from {service} ({method} {url})") from e
        except urllib.error.HTTPError as e:
            if e.code == 429:
                time.sleep(min(2 * (attempt + 1), 10))
                last_err = IntegrationRateLimited(f"{service} rate limited (429)")
                continue
            try:
                err_body = e.read().decode("utf-8", errors="ignore")
            except OSError:
                err_body = ""
            raise IntegrationError(f"HTTP {e.code} from {service}: {err_body[:300]}") from e
        except (urllib.error.URLError, TimeoutError) as e:
            last_err = e
            logger.warning("%s request failed (attempt %s): %s", service, attempt + 1, e)
            time.sleep(min(1 * (attempt + 1), 5))
            continue
    if isinstance(last_err, IntegrationRateLimited):
        raise last_err
    raise IntegrationError(f"{service} request failed after retries: {last_err}")
