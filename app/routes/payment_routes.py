from fastapi import APIRouter, Depends, status

from app.schemas.order_schema import PaymentConfirmation
from app.services.payment_service import PaymentProvider, verify_payment
from app.utils.dependencies import get_payment_provider


router = APIRouter(prefix="/api/payments", tags=["Payments"])


@router.post("/verify", status_code=status.HTTP_200_OK)
async def verify(
    data: PaymentConfirmation,
    payment_provider: PaymentProvider = Depends(get_payment_provider),
) -> dict:
    """
    Check a checkout signature before the order is placed.

    The order endpoint verifies the same block again; this call only lets the
    client fail fast.
    """
    payment_id = verify_payment(payment_provider, data)
    return {"success": True, "message": "Payment verified successfully", "payment_id": payment_id}
