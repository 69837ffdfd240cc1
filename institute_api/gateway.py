# institute_api/gateway.py
import hashlib
import hmac
import logging

import razorpay

from institute_api import config
from institute_api.errors import GatewayError

logger = logging.getLogger(__name__)


def to_minor_units(amount: float) -> int:
    return int(round(amount * 100))


class RazorpayGateway:
    """Hosted-checkout order creation and callback signature checks."""

    def __init__(self, key_id: str, key_secret: str, currency: str = "INR"):
        self.key_id = key_id
        self.key_secret = key_secret
        self.currency = currency
        self._client = None

    @property
    def client(self):
        if self._client is None:
            self._client = razorpay.Client(auth=(self.key_id, self.key_secret))
        return self._client

    def create_order(self, amount: float, receipt: str, notes: dict) -> dict:
        if not self.key_id or not self.key_secret:
            logger.error("Razorpay keys not configured")
            raise GatewayError("Payment gateway not configured")

        order_data = {
            "amount": to_minor_units(amount),
            "currency": self.currency,
            "receipt": receipt,
            "notes": {key: str(value) for key, value in notes.items() if value is not None},
            "payment_capture": 1,
        }
        try:
            order = self.client.order.create(data=order_data)
        except razorpay.errors.BadRequestError as e:
            logger.error("Razorpay BadRequestError: %s", e)
            raise GatewayError("Failed to create payment order")
        except razorpay.errors.ServerError as e:
            logger.error("Razorpay ServerError: %s", e)
            raise GatewayError("Payment gateway temporarily unavailable")
        logger.info("Razorpay order created: %s receipt=%s", order.get("id"), receipt)
        return order

    def expected_signature(self, order_id: str, payment_id: str) -> str:
        message = f"{order_id}|{payment_id}".encode("utf-8")
        return hmac.new(self.key_secret.encode("utf-8"), message, hashlib.sha256).hexdigest()

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        if not (order_id and payment_id and signature and self.key_secret):
            return False
        expected = self.expected_signature(order_id, payment_id)
        return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))


_gateway = None


def get_gateway() -> RazorpayGateway:
    global _gateway
    if _gateway is None:
        _gateway = RazorpayGateway(config.RAZORPAY_KEY_ID, config.RAZORPAY_KEY_SECRET, config.PAYMENT_CURRENCY)
    return _gateway
