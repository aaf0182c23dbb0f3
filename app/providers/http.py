from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from services.redaction import redact_payload

logger = logging.getLogger("payouts.provider")


@dataclass
class HttpResponse:
    status_code: int
    json: Optional[dict[str, Any]]
    text: str


class HttpClient:
    def __init__(
        self,
        timeout_s: float = 20.0,
        *,
        base_url: str = "",
        transport: httpx.BaseTransport | None = None,
    ):
        self._client = httpx.Client(
            base_url=base_url,
            timeout=timeout_s,
            follow_redirects=False,
            transport=transport,
        )

    def post(
        self,
        url: str,
        *,
        headers: dict[str, str],
        json_body: dict[str, Any] | None = None,
    ) -> HttpResponse:
        r = self._client.post(url, headers=headers, json=json_body)
        self._log("POST", url, r)
        return self._wrap(r)

    def get(self, url: str, *, headers: dict[str, str]) -> HttpResponse:
        r = self._client.get(url, headers=headers)
        self._log("GET", url, r)
        return self._wrap(r)

    def close(self) -> None:
        self._client.close()

    @staticmethod
    def _wrap(r: httpx.Response) -> HttpResponse:
        try:
            payload = r.json()
        except ValueError:
            payload = None
        if payload is not None and not isinstance(payload, dict):
            payload = {"data": payload}
        return HttpResponse(status_code=r.status_code, json=payload, text=r.text)

    @staticmethod
    def _log(method: str, url: str, r: httpx.Response) -> None:
        if not logger.isEnabledFor(logging.DEBUG):
            return
        try:
            body = r.json()
        except ValueError:
            body = r.text[:300]
        if isinstance(body, dict):
            body = redact_payload(body)
        logger.debug("%s %s -> status=%s body=%s", method, url, r.status_code, body)


def is_retryable_http(code: int) -> bool:
    # transient / throttling / gateway issues
    return code in (408, 425, 429) or 500 <= code <= 599
