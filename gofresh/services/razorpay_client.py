# gofresh/services/razorpay_client.py
from __future__ import annotations

import hashlib
import hmac
from typing import Any, Dict, Optional

import requests
import structlog

from gofresh.app_config import AppConfig
from gofresh.errors import PaymentProviderError

logger = structlog.stdlib.get_logger()


def _safe_json(resp: requests.Response) -> Optional[Dict[str, Any]]:
    """
    Return JSON dict if response body is JSON, else None.
    Gateway error pages come back as HTML.
    """
    try:
        data = resp.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else {"data": data}


class RazorpayClient:
    """
    Thin client for the Razorpay Orders API.
    One attempt per call: a failed payment call is surfaced to the buyer, never retried here.
    """

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        api_base: str = "https://api.razorpay.com/v1",
        timeout: int = 20,
        session: Optional[requests.Session] = None,
    ):
        self.key_id = key_id
        self.key_secret = key_secret
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, config: AppConfig) -> "RazorpayClient":
        return cls(
            key_id=config.razorpay_key_id,
            key_secret=config.razorpay_key_secret,
            api_base=config.razorpay_api_base,
            timeout=config.payment_timeout,
        )

    def _ensure_keys(self) -> None:
        if not self.key_id or not self.key_secret:
            raise PaymentProviderError("Online payments are not configured")

    def create_order(self, amount: int, currency: str, receipt: str, notes: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """
        Create a provider order for `amount` whole currency units.
        Razorpay expects the smallest unit (paise), so the amount is multiplied by 100.
        """
        self._ensure_keys()
        payload = {
            "amount": int(amount) * 100,
            "currency": currency,
            "receipt": receipt[:40],
            "notes": notes or {},
        }
        url = f"{self.api_base}/orders"
        try:
            resp = self.session.post(url, json=payload, auth=(self.key_id, self.key_secret), timeout=self.timeout)
        except requests.RequestException as e:
            logger.error("razorpay_request_failed", url=url, error=str(e))
            raise PaymentProviderError("Payment provider is unreachable, please try again")

        data = _safe_json(resp)
        if resp.status_code >= 400 or not data or not data.get("id"):
            err = (data or {}).get("error")
            detail = err.get("description") if isinstance(err, dict) else None
            logger.error("razorpay_order_failed", status=resp.status_code, detail=detail)
            raise PaymentProviderError(detail or f"Payment provider error ({resp.status_code})")

        logger.info("razorpay_order_created", order_id=data["id"], amount=payload["amount"])
        return data

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        """Checkout signature is HMAC-SHA256 of "<order_id>|<payment_id>" keyed with the secret."""
        self._ensure_keys()
        message = f"{order_id}|{payment_id}".encode("utf-8")
        expected = hmac.new(self.key_secret.encode("utf-8"), message, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, signature or "")
