import hashlib
import hmac
from abc import ABC, abstractmethod

from app.config.config import settings
from app.schemas.order_schema import PaymentConfirmation
from app.utils.errors import PaymentVerificationFailed
from app.utils.logger_config import setup_logger

logger = setup_logger()


class PaymentProvider(ABC):
    """Opaque gateway: checkout happens client side, the server only verifies."""

    @abstractmethod
    def verify(self, payment: PaymentConfirmation) -> bool: ...


class HmacPaymentProvider(PaymentProvider):
    """Gateway signing ``provider_order_id|payment_id`` with HMAC-SHA256."""

    def __init__(self, secret: str | None = None):
        self.secret = settings.PAYMENT_KEY_SECRET if secret is None else secret

    def sign(self, provider_order_id: str, payment_id: str) -> str:
        text = f"{provider_order_id}|{payment_id}"
        return hmac.new(
            self.secret.encode(), text.encode(), hashlib.sha256
        ).hexdigest()

    def verify(self, payment: PaymentConfirmation) -> bool:
        if not self.secret:
            logger.error("Payment secret is not configured; refusing verification")
            return False
        expected = self.sign(payment.provider_order_id, payment.payment_id)
        return hmac.compare_digest(expected, payment.signature)


def verify_payment(provider: PaymentProvider, payment: PaymentConfirmation) -> str:
    """Return the provider payment id, or raise if the signature does not match."""
    try:
        verified = provider.verify(payment)
    except Exception as e:
        logger.error(f"Payment provider error for {payment.payment_id}: {str(e)}")
        raise PaymentVerificationFailed("Payment provider unavailable.") from e

    if not verified:
        logger.warning(f"Invalid payment signature for payment {payment.payment_id}")
        raise PaymentVerificationFailed()

    logger.info(f"Payment {payment.payment_id} verified")
    return payment.payment_id
