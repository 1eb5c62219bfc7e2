from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

import stripe
from sqlalchemy import select
from sqlalchemy.orm import Session

from config import get_settings
from models import BillingEvent, BillingEventStatus, Plan
from services import UserService

logger = logging.getLogger(__name__)

ACTIVE_SUBSCRIPTION_STATUSES = {"active"}


class WebhookSignatureError(ValueError):
    pass


@dataclass(frozen=True)
class CheckoutSession:
    session_id: str
    url: Optional[str]


class CheckoutGateway:
    def __init__(self) -> None:
        self.settings = get_settings()

    def create_session(self, user_id: str, email: Optional[str]) -> CheckoutSession:
        if not self.settings.stripe_secret_key:
            raise ValueError("Payments are not configured")
        if not self.settings.stripe_price_id:
            raise ValueError("Subscription price is not configured")

        app_url = self.settings.app_url.rstrip("/")
        session = stripe.checkout.Session.create(
            api_key=self.settings.stripe_secret_key,
            mode="subscription",
            payment_method_types=["card"],
            line_items=[{"price": self.settings.stripe_price_id, "quantity": 1}],
            customer_email=email,
            metadata={"user_id": user_id},
            subscription_data={"metadata": {"user_id": user_id}},
            success_url=f"{app_url}/dashboard?success=true",
            cancel_url=f"{app_url}/dashboard?canceled=true",
        )
        logger.info(f"checkout_created: user={user_id} session={session.id}")
        return CheckoutSession(session_id=session.id, url=getattr(session, "url", None))


def parse_webhook(payload: bytes, signature: Optional[str]) -> dict[str, Any]:
    """Verify the processor's signature header and decode the event body."""
    settings = get_settings()
    if not signature or not settings.stripe_webhook_secret:
        raise WebhookSignatureError("Webhook secret or signature missing")
    try:
        body = payload.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise WebhookSignatureError("Webhook payload is not UTF-8") from exc
    try:
        stripe.WebhookSignature.verify_header(
            body, signature, settings.stripe_webhook_secret
        )
    except stripe.SignatureVerificationError as exc:
        raise WebhookSignatureError(str(exc)) from exc
    try:
        event = json.loads(body)
    except json.JSONDecodeError as exc:
        raise WebhookSignatureError("Webhook payload is not valid JSON") from exc
    if not isinstance(event, dict) or "id" not in event or "type" not in event:
        raise WebhookSignatureError("Webhook payload is not an event")
    return event


def _metadata_user(obj: dict[str, Any]) -> Optional[str]:
    metadata = obj.get("metadata") or {}
    return metadata.get("user_id") or metadata.get("userId")


class BillingService:
    """Applies processor events to user plans.

    Every event is recorded by id before it is applied, so redelivered events
    are skipped once processed. Failures are stored on the event row instead of
    being raised back to the processor; ``retry_failed`` replays them and
    moves events that keep failing to ``dead``.
    """

    def __init__(self, session: Session, max_attempts: Optional[int] = None) -> None:
        self.session = session
        self.users = UserService(session)
        self.max_attempts = max_attempts or get_settings().billing_max_attempts

    def handle_event(self, event: dict[str, Any]) -> BillingEventStatus:
        event_id = str(event["id"])
        record = self.session.scalar(
            select(BillingEvent).where(BillingEvent.event_id == event_id)
        )
        if record and record.status in {
            BillingEventStatus.processed,
            BillingEventStatus.dead,
        }:
            logger.info(
                f"billing_event_duplicate: id={event_id} status={record.status.value}"
            )
            return record.status
        if not record:
            record = BillingEvent(
                event_id=event_id,
                event_type=str(event["type"]),
                payload_json=json.dumps(event),
                status=BillingEventStatus.pending,
                attempts=0,
            )
            self.session.add(record)
            self.session.commit()
        return self._process(record, event)

    def retry_failed(self) -> int:
        failed = self.session.scalars(
            select(BillingEvent)
            .where(BillingEvent.status == BillingEventStatus.failed)
            .order_by(BillingEvent.id.asc())
        ).all()
        recovered = 0
        for record in failed:
            status = self._process(record, json.loads(record.payload_json))
            if status == BillingEventStatus.processed:
                recovered += 1
        return recovered

    def _process(self, record: BillingEvent, event: dict[str, Any]) -> BillingEventStatus:
        attempts = record.attempts + 1
        try:
            self._apply(event)
        except Exception as exc:
            self.session.rollback()
            record.attempts = attempts
            record.last_error = str(exc)[:2000]
            if attempts >= self.max_attempts:
                record.status = BillingEventStatus.dead
            else:
                record.status = BillingEventStatus.failed
            self.session.commit()
            logger.exception(
                f"billing_event_failed: id={record.event_id} type={record.event_type} "
                f"attempts={record.attempts} status={record.status.value}"
            )
            return record.status
        record.attempts = attempts
        record.status = BillingEventStatus.processed
        record.last_error = None
        self.session.commit()
        return record.status

    def _apply(self, event: dict[str, Any]) -> None:
        event_type = event["type"]
        obj = (event.get("data") or {}).get("object") or {}

        if event_type == "checkout.session.completed":
            user_id = _metadata_user(obj)
            if user_id:
                self.users.set_plan(user_id, Plan.premium, obj.get("subscription"))
        elif event_type in {
            "customer.subscription.created",
            "customer.subscription.updated",
        }:
            user_id = _metadata_user(obj)
            if user_id:
                active = obj.get("status") in ACTIVE_SUBSCRIPTION_STATUSES
                self.users.set_plan(
                    user_id, Plan.premium if active else Plan.free, obj.get("id")
                )
        elif event_type == "customer.subscription.deleted":
            user_id = _metadata_user(obj)
            if user_id:
                self.users.set_plan(user_id, Plan.free)
        elif event_type in {"invoice.payment_succeeded", "invoice.payment_failed"}:
            subscription_id = obj.get("subscription")
            user = (
                self.users.find_by_subscription(subscription_id)
                if subscription_id
                else None
            )
            logger.info(
                f"billing_invoice: type={event_type} subscription={subscription_id} "
                f"user={user.id if user else None}"
            )
        else:
            logger.info(f"billing_event_unhandled: type={event_type}")
