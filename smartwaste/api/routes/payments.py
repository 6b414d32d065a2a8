"""
API routes for payments
"""
from fastapi import APIRouter, Depends, Query
from typing import Any, Dict, Optional
from datetime import datetime
from smartwaste.api.deps import get_principal
from smartwaste.models.schemas import Payment, PaymentCreate, PaymentsResponse, PaymentStatusUpdate
from smartwaste.services.capabilities import Principal
from smartwaste.services.payments import PaymentLedger, is_refundable, net_amount
from smartwaste.utils import pagination, serialize_doc, utcnow

router = APIRouter(prefix="/api/payments", tags=["payments"])


def present_payment(doc: Dict[str, Any], now: Optional[datetime] = None) -> Payment:
    cleaned = serialize_doc(doc)
    cleaned["net_amount"] = net_amount(doc)
    cleaned["is_refundable"] = is_refundable(doc, now or utcnow())
    return Payment(**cleaned)


@router.post("", response_model=Payment, status_code=201)
async def record_payment(data: PaymentCreate, principal: Principal = Depends(get_principal)):
    """Record a payment outcome reported by the payment gateway"""
    payment = await PaymentLedger().record_payment(principal, data.model_dump())
    return present_payment(payment)


@router.get("", response_model=PaymentsResponse)
async def list_payments(
    type: Optional[str] = None,
    status: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    principal: Principal = Depends(get_principal),
):
    payments, total = await PaymentLedger().list_payments(principal, type, status, page, limit)
    now = utcnow()
    return PaymentsResponse(
        payments=[present_payment(doc, now) for doc in payments],
        pagination=pagination(total, page, limit),
    )


@router.get("/{payment_id}", response_model=Payment)
async def get_payment(payment_id: str, principal: Principal = Depends(get_principal)):
    return present_payment(await PaymentLedger().get_payment(principal, payment_id))


@router.put("/{payment_id}/status", response_model=Payment)
async def update_payment_status(
    payment_id: str,
    data: PaymentStatusUpdate,
    principal: Principal = Depends(get_principal),
):
    payment = await PaymentLedger().update_payment_status(
        principal, payment_id, data.status, data.transaction_id
    )
    return present_payment(payment)
