"""
Payment Gateway

The admissions engine only asks the gateway to open an order for a course
fee; completion arrives through the gateway's callback, which records the
payment. The offline gateway issues local order references for development
and for deployments that collect fees at the counter.
"""

import logging
import uuid
from decimal import Decimal
from typing import Protocol

from fastapi import HTTPException, status

from app.core.config import settings

logger = logging.getLogger(__name__)


class PaymentGateway(Protocol):
    """Operations the admissions engine needs from a payment gateway."""

    async def create_order(self, amount: Decimal, receipt: str) -> str: ...


class OfflinePaymentGateway:
    """Issues order references without contacting an external provider."""

    prefix = "order_"

    async def create_order(self, amount: Decimal, receipt: str) -> str:
        order_ref = f"{self.prefix}{uuid.uuid4().hex[:14]}"
        logger.info(f"Created offline payment order {order_ref} for {receipt} ({amount})")
        return order_ref


def get_payment_gateway() -> PaymentGateway:
    """
    FastAPI dependency returning the configured payment gateway.

    Raises:
        HTTPException 503: If no gateway is configured
    """
    if settings.payment_gateway == "offline":
        return OfflinePaymentGateway()

    logger.error(f"Payment gateway '{settings.payment_gateway}' is not available")
    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={
            "error": "PAYMENT_GATEWAY_UNAVAILABLE",
            "message": "Online payment is not available right now.",
        },
    )
