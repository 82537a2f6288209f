"""
Order service: turns a donation intent into a payable gateway order and is
the single writer of confirmed-payment records.
"""
import json
import uuid
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional

import structlog

from denasetu.core.config import get_settings
from denasetu.core.exceptions import (
    DuplicateRecord,
    IdempotencyConflict,
    NotAuthenticated,
    NotFound,
    SignatureError,
    ValidationFailed,
)
from denasetu.middleware.metrics import gateway_orders_total, payments_confirmed_total
from denasetu.models import CampaignStatus, DonationStatus, MONEY_CATEGORY, PaymentOrderStatus
from denasetu.schemas.order import CreateOrderRequest, ConfirmedPaymentResponse
from denasetu.schemas.session import SessionContext, Role
from denasetu.services.payment_gateway import RazorpayClient
from denasetu.store.data_store import DataStore, money

logger = structlog.get_logger(__name__)
settings = get_settings()

RECEIPT_MAX_LENGTH = 40
CAPTURE_EVENTS = ("payment.captured", "order.paid")


def to_minor_units(amount) -> int:
    """round(amount * 100) in exact decimal arithmetic"""
    value = Decimal(str(amount))
    if value <= 0:
        raise ValidationFailed("Amount must be greater than zero")
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def build_receipt(campaign_id: Optional[str] = None, now: Optional[datetime] = None) -> str:
    """Receipt label carrying the campaign reference and a millisecond timestamp"""
    now = now or datetime.now(timezone.utc)
    stamp = str(int(now.timestamp() * 1000))
    if not campaign_id:
        return f"donation_{stamp}"[:RECEIPT_MAX_LENGTH]
    room = RECEIPT_MAX_LENGTH - len("campaign__") - len(stamp)
    return f"campaign_{campaign_id[:room]}_{stamp}"


class _AlreadyRecorded(Exception):
    pass


class OrderService:
    """Business logic for checkout orders and payment confirmation"""

    @staticmethod
    async def create_order(
        store: DataStore,
        gateway: RazorpayClient,
        order_data: CreateOrderRequest,
        session: Optional[SessionContext] = None,
        idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a gateway order for a checkout attempt.

        A repeated idempotency key returns the order stored for it without
        calling the gateway again. Nothing is stored when the gateway fails.
        """
        if not order_data.campaign_id and not order_data.ngo_id:
            raise ValidationFailed("Either campaign_id or ngo_id is required")

        donor_id = session.user_id if session and session.is_role(Role.DONOR) else None
        ngo_id = order_data.ngo_id
        amount = money(order_data.amount)

        # A retried checkout gets its stored order even if the campaign has closed since
        if idempotency_key:
            existing = OrderService._find_by_key(store, idempotency_key)
            if existing is not None:
                return OrderService._replay(existing, amount, order_data, donor_id)

        if order_data.campaign_id:
            campaign = store.get("ngo_campaigns", order_data.campaign_id)
            if campaign is None:
                raise NotFound(f"Campaign {order_data.campaign_id} not found")
            if campaign.status != CampaignStatus.ACTIVE.value:
                raise ValidationFailed(f"Campaign {order_data.campaign_id} is not accepting donations")
            ngo_id = campaign.ngo_id
        else:
            if store.get("ngos", ngo_id) is None:
                raise NotFound(f"NGO {ngo_id} not found")
            # Direct donations become rows in `donations`, which need a donor
            if donor_id is None:
                raise NotAuthenticated("A donor session is required for direct NGO donations")

        amount_minor = to_minor_units(amount)

        if not idempotency_key:
            idempotency_key = str(uuid.uuid4())

        receipt = build_receipt(order_data.campaign_id)
        notes = {k: v for k, v in {
            "campaign_id": order_data.campaign_id,
            "ngo_id": ngo_id,
            "donor_id": donor_id,
        }.items() if v}

        try:
            order = await gateway.create_order(amount_minor, settings.payment_currency, receipt, notes=notes)
        except Exception:
            gateway_orders_total.labels(status="failed").inc()
            raise

        try:
            store.insert("payment_orders", {
                "idempotency_key": idempotency_key,
                "gateway_order_id": order["id"],
                "donor_id": donor_id,
                "ngo_id": ngo_id,
                "campaign_id": order_data.campaign_id,
                "amount": amount,
                "amount_minor": amount_minor,
                "currency": settings.payment_currency,
                "receipt": receipt,
                "status": PaymentOrderStatus.CREATED.value,
                "gateway_order": json.loads(json.dumps(order, default=str)),
            })
        except DuplicateRecord:
            # Lost a race with a concurrent request carrying the same key
            existing = OrderService._find_by_key(store, idempotency_key)
            if existing is None:
                raise
            logger.warning(
                "Concurrent checkout with same idempotency key, discarding new gateway order",
                discarded_order_id=order["id"],
                kept_order_id=existing.gateway_order_id
            )
            return OrderService._replay(existing, amount, order_data, donor_id)

        gateway_orders_total.labels(status="created").inc()
        logger.info(
            "Checkout order created",
            order_id=order["id"],
            amount=str(amount),
            amount_minor=amount_minor,
            campaign_id=order_data.campaign_id,
            ngo_id=ngo_id,
            donor_id=donor_id
        )
        return order

    @staticmethod
    def _find_by_key(store: DataStore, idempotency_key: str):
        rows = store.select("payment_orders", {"idempotency_key": idempotency_key}, limit=1)
        return rows[0] if rows else None

    @staticmethod
    def _replay(existing, amount: Decimal, order_data: CreateOrderRequest,
                donor_id: Optional[str]) -> Dict[str, Any]:
        same_request = (
            money(existing.amount) == amount
            and existing.donor_id == donor_id
            and existing.campaign_id == order_data.campaign_id
            and (order_data.campaign_id or existing.ngo_id == order_data.ngo_id)
        )
        if not same_request:
            raise IdempotencyConflict("Idempotency key was already used for a different checkout")
        gateway_orders_total.labels(status="replayed").inc()
        logger.info("Returning stored order for repeated checkout", order_id=existing.gateway_order_id)
        return existing.gateway_order

    @staticmethod
    def confirm_payment(
        store: DataStore,
        gateway: RazorpayClient,
        order_id: str,
        payment_id: str,
        signature: str,
    ) -> ConfirmedPaymentResponse:
        """Verify the checkout signature and record the payment"""
        if not gateway.verify_payment_signature(order_id, payment_id, signature):
            logger.warning("Payment signature mismatch", order_id=order_id, payment_id=payment_id)
            raise SignatureError("Invalid payment signature")
        return OrderService.record_payment(store, order_id, payment_id, source="checkout")

    @staticmethod
    def handle_webhook(
        store: DataStore,
        gateway: RazorpayClient,
        body: bytes,
        signature: str,
    ) -> Dict[str, Any]:
        """Record captured payments pushed by the gateway"""
        if not gateway.verify_webhook_signature(body, signature):
            logger.warning("Webhook signature mismatch")
            raise SignatureError("Invalid webhook signature")

        try:
            payload = json.loads(body or b"{}")
        except ValueError:
            raise ValidationFailed("Webhook body is not valid JSON")

        event = payload.get("event")
        if event not in CAPTURE_EVENTS:
            logger.info("Ignoring webhook event", gateway_event=event)
            return {"status": "ignored", "event": event}

        entity = (payload.get("payload", {}).get("payment") or {}).get("entity") or {}
        order_id = entity.get("order_id")
        payment_id = entity.get("id")
        if not order_id or not payment_id:
            logger.warning("Webhook payment entity incomplete", gateway_event=event)
            return {"status": "ignored", "event": event}

        try:
            record = OrderService.record_payment(store, order_id, payment_id, source="webhook")
        except NotFound:
            # Orders created outside this service
            logger.warning("Webhook for unknown order", order_id=order_id)
            return {"status": "ignored", "event": event}
        return {"status": "ok", "event": event, "record_id": record.record_id}

    @staticmethod
    def record_payment(store: DataStore, order_id: str, payment_id: str, source: str) -> ConfirmedPaymentResponse:
        """
        Write the confirmed-payment record for a ledger order exactly once.

        Campaign orders produce a ``campaign_donations`` row and bump the
        campaign's raised amount; direct orders produce a completed money
        donation. A repeat for an already paid order returns the first record.
        """
        rows = store.select("payment_orders", {"gateway_order_id": order_id}, limit=1)
        if not rows:
            raise NotFound(f"Order {order_id} not found")
        ledger = rows[0]

        if ledger.status == PaymentOrderStatus.PAID.value:
            return OrderService._existing_record(store, ledger)

        try:
            with store.transaction():
                changed = store.update(
                    "payment_orders",
                    ledger.id,
                    {"status": PaymentOrderStatus.PAID.value, "payment_id": payment_id},
                    expected={"status": PaymentOrderStatus.CREATED.value},
                )
                if not changed:
                    raise _AlreadyRecorded()

                if ledger.campaign_id:
                    relation = "campaign_donations"
                    record = store.insert(relation, {
                        "campaign_id": ledger.campaign_id,
                        "donor_id": ledger.donor_id,
                        "amount": ledger.amount,
                        "payment_id": payment_id,
                        "order_id": order_id,
                        "status": "SUCCESS",
                    })
                    store.increment("ngo_campaigns", ledger.campaign_id, "raised_amount", ledger.amount)
                else:
                    relation = "donations"
                    record = store.insert(relation, {
                        "donor_id": ledger.donor_id,
                        "ngo_id": ledger.ngo_id,
                        "category": MONEY_CATEGORY,
                        "description": f"Monetary donation of ₹{ledger.amount}",
                        "amount": ledger.amount,
                        "status": DonationStatus.COMPLETED.value,
                        "payment_id": payment_id,
                        "order_id": order_id,
                    })

                if ledger.ngo_id:
                    store.insert("notifications", {
                        "user_id": ledger.ngo_id,
                        "title": "Donation received",
                        "message": f"A payment of ₹{ledger.amount} was received.",
                    })
        except _AlreadyRecorded:
            ledger = store.get("payment_orders", ledger.id, refresh=True)
            return OrderService._existing_record(store, ledger)

        payments_confirmed_total.labels(source=source, relation=relation).inc()
        logger.info(
            "Payment recorded",
            source=source,
            relation=relation,
            record_id=record.id,
            order_id=order_id,
            payment_id=payment_id,
            amount=str(ledger.amount)
        )
        return OrderService._response(relation, record, ledger)

    @staticmethod
    def _existing_record(store: DataStore, ledger) -> ConfirmedPaymentResponse:
        relation = "campaign_donations" if ledger.campaign_id else "donations"
        rows = store.select(relation, {"payment_id": ledger.payment_id}, limit=1)
        if not rows:
            raise NotFound(f"No record for paid order {ledger.gateway_order_id}")
        logger.info("Payment already recorded", order_id=ledger.gateway_order_id, payment_id=ledger.payment_id)
        return OrderService._response(relation, rows[0], ledger)

    @staticmethod
    def _response(relation: str, record, ledger) -> ConfirmedPaymentResponse:
        return ConfirmedPaymentResponse(
            relation=relation,
            record_id=record.id,
            order_id=ledger.gateway_order_id,
            payment_id=record.payment_id,
            amount=record.amount,
            campaign_id=ledger.campaign_id,
            ngo_id=ledger.ngo_id,
            donor_id=ledger.donor_id,
            created_at=record.created_at,
        )
