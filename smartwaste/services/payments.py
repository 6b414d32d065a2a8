"""
Payment ledger
Records outcomes reported by the payment gateway; never talks to the gateway.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from pymongo import ReturnDocument

from smartwaste.database import get_database
from smartwaste.errors import Conflict, Forbidden, InvalidInput, InvalidState, NotFound, Unavailable, translate_store_errors
from smartwaste.models.enums import CollectionKind, DiscountType, PaymentStatus, PaymentType
from smartwaste.models.mongodb_models import PaymentDocument
from smartwaste.services.capabilities import Principal, is_admin, require_owner_or_admin
from smartwaste.services.fees import bulk_fee
from smartwaste.utils import optional_object_id, to_object_id, utcnow

logger = logging.getLogger(__name__)

REFUND_WINDOW_DAYS = 30

TRANSITIONS = {
    PaymentStatus.PENDING: {
        PaymentStatus.PROCESSING,
        PaymentStatus.COMPLETED,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELLED,
    },
    PaymentStatus.PROCESSING: {
        PaymentStatus.COMPLETED,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELLED,
    },
    PaymentStatus.COMPLETED: {PaymentStatus.REFUNDED},
    PaymentStatus.FAILED: set(),
    PaymentStatus.CANCELLED: set(),
    PaymentStatus.REFUNDED: set(),
}

# Gateway outcomes; only admins report them
ADMIN_STATUSES = {PaymentStatus.COMPLETED, PaymentStatus.FAILED}
INITIAL_STATUSES = {
    PaymentStatus.PENDING,
    PaymentStatus.PROCESSING,
    PaymentStatus.COMPLETED,
    PaymentStatus.FAILED,
}


def net_amount(payment: Dict[str, Any]) -> float:
    """Amount after discount plus tax, never negative"""
    amount = float(payment.get("amount") or 0)
    discount = payment.get("discount") or {}
    if discount.get("amount"):
        if discount.get("type") == DiscountType.PERCENTAGE.value:
            amount = amount * (1 - discount["amount"] / 100)
        else:
            amount = amount - discount["amount"]
    return round(max(0.0, amount + float(payment.get("tax_amount") or 0)), 2)


def is_refundable(payment: Dict[str, Any], now: datetime) -> bool:
    created_at = payment.get("created_at")
    return (
        payment.get("status") == PaymentStatus.COMPLETED.value
        and created_at is not None
        and now - created_at < timedelta(days=REFUND_WINDOW_DAYS)
    )


def parse_status(status: Any) -> PaymentStatus:
    try:
        return PaymentStatus(status)
    except ValueError:
        raise InvalidInput(f"Unknown payment status: {status}")


def check_transition(payment: Dict[str, Any], new: PaymentStatus, principal: Principal, now: datetime):
    """
    Validate a status change for the given actor

    Raises:
        Forbidden: a non-admin reporting a gateway outcome
        InvalidState: a move the table does not allow, or a refund
            outside the refund window
    """
    if new in ADMIN_STATUSES and not is_admin(principal):
        raise Forbidden(f"Only admins can mark a payment {new.value}")
    current = PaymentStatus(payment["status"])
    if new not in TRANSITIONS[current]:
        raise InvalidState(f"Cannot move payment from {current.value} to {new.value}")
    if new == PaymentStatus.REFUNDED and not is_refundable(payment, now):
        raise InvalidState("Payment is not refundable")


def collection_payment_fields(payment: Dict[str, Any]) -> Dict[str, Any]:
    """Mirror of a bulk payment's outcome; the fee itself stays as quoted"""
    return {
        "payment.status": payment.get("status"),
        "payment.transaction_id": payment.get("transaction_id"),
        "payment.method": payment.get("payment_method"),
    }


class PaymentLedger:
    """Payment records and their mirror on bulk collections"""

    def __init__(self, db=None, clock: Callable[[], datetime] = utcnow):
        self.db = db if db is not None else get_database()
        if self.db is None:
            raise Unavailable("Database not available")
        self.clock = clock

    async def _get(self, payment_id: Any) -> PaymentDocument:
        payment = await self.db.payments.find_one({"_id": to_object_id(payment_id, "Payment")})
        if not payment:
            raise NotFound("Payment not found")
        return payment

    @translate_store_errors
    async def record_payment(self, principal: Principal, data: Dict[str, Any]) -> PaymentDocument:
        """
        Record a payment reported by the gateway

        Bulk collection payments must match the fee quoted on the collection;
        their outcome is mirrored onto it, the quoted amount never changes.
        """
        if data.get("amount") is None or data["amount"] < 0:
            raise InvalidInput("Amount must be non-negative")
        try:
            payment_type = PaymentType(data["type"])
        except ValueError:
            raise InvalidInput(f"Unknown payment type: {data['type']}")
        status = parse_status(data.get("status") or PaymentStatus.PENDING.value)
        if status not in INITIAL_STATUSES:
            raise InvalidInput(f"A payment cannot be recorded as {status.value}")
        if status in ADMIN_STATUSES and not is_admin(principal):
            raise Forbidden(f"Only admins can record a {status.value} payment")

        collection_oid = optional_object_id(data.get("collection_id"), "Collection")
        if payment_type == PaymentType.BULK_COLLECTION:
            if collection_oid is None:
                raise InvalidInput("Bulk collection payments must reference a collection")
            collection = await self.db.collections.find_one({"_id": collection_oid})
            if not collection:
                raise NotFound("Collection not found")
            if collection.get("kind") != CollectionKind.BULK.value:
                raise InvalidInput("Collection is not a bulk collection")
            require_owner_or_admin(principal, collection.get("resident"), "collection")

            quoted = collection.get("payment") or {}
            if quoted.get("status") == PaymentStatus.COMPLETED.value:
                raise InvalidState("Collection is already paid")
            fee = quoted.get("amount")
            if fee is None:
                fee = bulk_fee(collection.get("waste_composition"))
            if round(float(data["amount"]), 2) != round(float(fee), 2):
                raise InvalidInput(f"Bulk collection fee is {fee}")

        now = self.clock()
        payment: PaymentDocument = {
            "user": to_object_id(principal.id, "User"),
            "type": payment_type.value,
            "amount": float(data["amount"]),
            "currency": "USD",
            "status": status.value,
            "payment_method": data["payment_method"],
            "transaction_id": data.get("transaction_id"),
            "description": data.get("description"),
            "collection": collection_oid,
            "tax_amount": float(data.get("tax_amount") or 0),
            "discount": data.get("discount"),
            "created_at": now,
            "updated_at": now,
        }
        result = await self.db.payments.insert_one(payment)
        payment["_id"] = result.inserted_id

        await self._mirror(payment, now)
        logger.info(f"Recorded {payment_type.value} payment {result.inserted_id} ({payment['status']})")
        return payment

    @translate_store_errors
    async def update_payment_status(
        self,
        principal: Principal,
        payment_id: Any,
        status: Any,
        transaction_id: Optional[str] = None
    ) -> PaymentDocument:
        """
        Move a payment along its lifecycle

        The payer may cancel or, within the refund window, refund; completed
        and failed are gateway outcomes reported by admins.
        """
        status = parse_status(status)
        payment = await self._get(payment_id)
        require_owner_or_admin(principal, payment.get("user"), "payment")

        now = self.clock()
        check_transition(payment, status, principal, now)
        changes: Dict[str, Any] = {"status": status.value, "updated_at": now}
        if transaction_id:
            changes["transaction_id"] = transaction_id
        updated = await self.db.payments.find_one_and_update(
            {"_id": payment["_id"], "status": payment["status"]},
            {"$set": changes},
            return_document=ReturnDocument.AFTER
        )
        if not updated:
            raise Conflict("Payment was updated concurrently, please retry")

        await self._mirror(updated, now)
        logger.info(f"Payment {updated['_id']} moved from {payment['status']} to {status.value}")
        return updated

    async def _mirror(self, payment: PaymentDocument, now: datetime):
        if payment.get("type") != PaymentType.BULK_COLLECTION.value or payment.get("collection") is None:
            return
        await self.db.collections.update_one(
            {"_id": payment["collection"]},
            {"$set": {**collection_payment_fields(payment), "updated_at": now}}
        )

    @translate_store_errors
    async def get_payment(self, principal: Principal, payment_id: Any) -> PaymentDocument:
        payment = await self._get(payment_id)
        require_owner_or_admin(principal, payment.get("user"), "payment")
        return payment

    @translate_store_errors
    async def list_payments(
        self,
        principal: Principal,
        payment_type: Optional[str] = None,
        status: Optional[str] = None,
        page: int = 1,
        limit: int = 10
    ) -> Tuple[List[PaymentDocument], int]:
        query: Dict[str, Any] = {}
        if not is_admin(principal):
            query["user"] = to_object_id(principal.id, "User")
        if payment_type:
            query["type"] = payment_type
        if status:
            query["status"] = status

        cursor = self.db.payments.find(query).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
        payments = await cursor.to_list(length=limit)
        total = await self.db.payments.count_documents(query)
        return payments, total
