"""Razorpay REST API client for orders, payments and refunds."""
import logging
from typing import Any, Dict, Optional

import requests

from storefront.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)


class RazorpayClient:
    """Thin client over the Razorpay REST API (amounts in minor units)."""

    BASE_URL = "https://api.razorpay.com/v1"

    def __init__(self, key_id: Optional[str], key_secret: Optional[str], timeout: int = 10):
        """
        Initialize Razorpay client.

        Args:
            key_id: API key id (RAZORPAY_KEY_ID)
            key_secret: API key secret (RAZORPAY_KEY_SECRET)
            timeout: seconds to wait for the gateway
        """
        if not key_id or not key_secret:
            raise ValueError("RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET are required")

        self.key_id = key_id
        self.timeout = timeout
        self.session = requests.Session()
        self.session.auth = (key_id, key_secret)
        self.session.headers.update({'Content-Type': 'application/json'})

    def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.BASE_URL}{path}"
        try:
            response = self.session.request(method, url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.HTTPError as e:
            body = e.response.text if e.response is not None else ''
            logger.error(f"[RAZORPAY] {method} {path} failed: {body}")
            raise ExternalServiceError(
                'Payment gateway rejected the request',
                payload={'gateway_status': e.response.status_code if e.response is not None else None}
            )
        except requests.RequestException as e:
            logger.error(f"[RAZORPAY] {method} {path} unreachable: {e}")
            raise ExternalServiceError('Payment gateway is unavailable')

    def create_order(self, amount: int, currency: str, receipt: str,
                     notes: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """
        Create a gateway order.

        Args:
            amount: amount in minor units (paise)
            currency: ISO currency code
            receipt: our order number

        Returns:
            Dict with the gateway order, including ``id``

        Raises:
            ExternalServiceError: if the gateway is unreachable or rejects the order
        """
        payload = {'amount': amount, 'currency': currency, 'receipt': receipt}
        if notes:
            payload['notes'] = notes

        logger.info(f"[RAZORPAY] Creating order for {receipt}: {amount} {currency}")
        data = self._request('POST', '/orders', payload)
        logger.info(f"[RAZORPAY] Order created: {data.get('id')} for {receipt}")
        return data

    def fetch_payment(self, payment_id: str) -> Dict[str, Any]:
        return self._request('GET', f'/payments/{payment_id}')

    def refund(self, payment_id: str, amount: Optional[int] = None,
               notes: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """
        Refund a captured payment, fully when ``amount`` is omitted.

        Returns:
            Dict with the refund, whose ``status`` is ``processed`` once settled
        """
        payload: Dict[str, Any] = {}
        if amount is not None:
            payload['amount'] = amount
        if notes:
            payload['notes'] = notes

        logger.info(f"[RAZORPAY] Refunding payment {payment_id}: {amount if amount is not None else 'full'}")
        data = self._request('POST', f'/payments/{payment_id}/refund', payload)
        logger.info(f"[RAZORPAY] Refund {data.get('id')} status={data.get('status')}")
        return data
