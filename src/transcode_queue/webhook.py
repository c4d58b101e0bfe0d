"""Signed completion webhook with retries.

The receiver verifies ``X-Webhook-Signature``, the hex HMAC-SHA256 of the
exact request body under the shared secret.
"""

import hashlib
import hmac
import json
import logging
import time
from typing import Any, Callable, Dict, Optional, Sequence

import requests

from .models import WebhookConfig

logger = logging.getLogger(__name__)


def encode_body(payload: Dict[str, Any]) -> bytes:
    """Compact JSON; the signature covers exactly these bytes."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def sign_body(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, secret: str, signature: str) -> bool:
    """Constant-time check a receiver can use."""
    return hmac.compare_digest(sign_body(body, secret), signature or "")


class WebhookNotifier:
    """POSTs job results to the submitter's endpoint."""

    def __init__(
        self,
        secret: str,
        timeout_s: float = 30.0,
        retry_delays_s: Sequence[float] = (1, 5, 30, 300, 1800),
        max_attempts: int = 5,
        signature_header: str = "X-Webhook-Signature",
        user_agent: str = "Video-Processor-Worker/1.0",
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if not secret:
            raise ValueError("webhook secret is required")

        self._secret = secret
        self.timeout_s = timeout_s
        self.retry_delays_s = list(retry_delays_s)
        self.max_attempts = max_attempts
        self.signature_header = signature_header
        self.user_agent = user_agent
        self._session = session or requests.Session()
        self._sleep = sleep

    @classmethod
    def from_config(cls, cfg: WebhookConfig, **kwargs) -> "WebhookNotifier":
        return cls(
            secret=cfg.secret,
            timeout_s=cfg.timeout_s,
            retry_delays_s=cfg.retry_delays_s,
            max_attempts=cfg.max_attempts,
            signature_header=cfg.signature_header,
            user_agent=cfg.user_agent,
            **kwargs,
        )

    def close(self) -> None:
        self._session.close()

    def _headers(self, body: bytes) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            self.signature_header: sign_body(body, self._secret),
            "User-Agent": self.user_agent,
        }

    def deliver(self, url: str, payload: Dict[str, Any]) -> bool:
        """Send ``payload`` until a 2xx response or attempts run out.

        Returns:
            True on the first 2xx response, False after the last attempt
        """
        body = encode_body(payload)
        headers = self._headers(body)

        for attempt in range(1, self.max_attempts + 1):
            try:
                resp = self._session.post(url, data=body, headers=headers, timeout=self.timeout_s)
                if 200 <= resp.status_code < 300:
                    logger.info("Webhook delivered to %s (attempt %d)", url, attempt)
                    return True
                logger.warning(
                    "Webhook attempt %d/%d to %s returned HTTP %d",
                    attempt, self.max_attempts, url, resp.status_code,
                )
            except requests.RequestException as e:
                logger.warning(
                    "Webhook attempt %d/%d to %s failed: %s", attempt, self.max_attempts, url, e
                )

            if attempt < self.max_attempts and self.retry_delays_s:
                delay = self.retry_delays_s[min(attempt - 1, len(self.retry_delays_s) - 1)]
                self._sleep(delay)

        logger.error("Webhook delivery to %s failed after %d attempts", url, self.max_attempts)
        return False
