"""Outbound HTTP calls for WEBHOOK actions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import requests

logger = logging.getLogger(__name__)

SUPPORTED_METHODS = frozenset({"GET", "POST", "PUT"})


@dataclass(frozen=True, slots=True)
class WebhookResponse:
    status_code: int
    body: str


class WebhookDeliveryError(Exception):
    """The endpoint could not be reached or answered with a non-2xx status."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class WebhookClient:
    """Thin `requests` wrapper with a mandatory timeout."""

    def __init__(self, *, timeout: float = 10.0, session: requests.Session | None = None) -> None:
        self._timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": "recruit-workflow-engine"})

    def send(
        self,
        *,
        url: str,
        method: str = "POST",
        payload: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> WebhookResponse:
        method = method.upper()
        if method not in SUPPORTED_METHODS:
            raise ValueError(f"Unsupported webhook method: {method}")

        kwargs: dict[str, Any] = {"headers": headers or {}, "timeout": self._timeout}
        if method != "GET":
            kwargs["json"] = payload or {}

        try:
            resp = self._session.request(method, url, **kwargs)
        except requests.RequestException as e:
            raise WebhookDeliveryError(f"Webhook {method} {url} failed: {e}") from e

        if not 200 <= resp.status_code < 300:
            raise WebhookDeliveryError(
                f"Webhook {method} {url} returned HTTP {resp.status_code}",
                status_code=resp.status_code,
            )

        logger.debug("Webhook delivered", extra={"url": url, "status_code": resp.status_code})
        return WebhookResponse(status_code=resp.status_code, body=resp.text[:1000])

    def close(self) -> None:
        self._session.close()
