from __future__ import annotations

import hashlib
import hmac
import logging
import time
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from analysis_quota.core.database import dialect_insert, get_db
from analysis_quota.core.errors import InvalidPeriodState, QuotaError
from analysis_quota.core.settings import settings
from analysis_quota.models.billing_event import BillingEvent
from analysis_quota.services.billing_period import BillingPeriod, period_from_timestamps
from analysis_quota.services.plans import Plan
from analysis_quota.services.reconciler import (
    find_user_id,
    payment_failed,
    subscription_activated,
    subscription_canceled,
    subscription_renewed,
)

logger = logging.getLogger(__name__)

router = APIRouter()

PROVIDER = "stripe"


def _verify_stripe_signature(raw_body: bytes, header: str | None, now: float | None = None) -> None:
    if not settings.stripe_webhook_secret:
        raise HTTPException(status_code=500, detail="STRIPE_WEBHOOK_SECRET is not configured")
    sig_header = (header or "").strip()
    if not sig_header:
        raise HTTPException(status_code=400, detail="Missing Stripe-Signature")

    timestamp = ""
    signatures: list[str] = []
    for part in sig_header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            timestamp = value
        elif key == "v1" and value:
            signatures.append(value)
    if not timestamp or not signatures:
        raise HTTPException(status_code=400, detail="Invalid signature")
    try:
        ts = int(timestamp)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid signature")

    tolerance = int(settings.stripe_webhook_tolerance_s or 0)
    current = int(now if now is not None else time.time())
    if tolerance > 0 and abs(current - ts) > tolerance:
        raise HTTPException(status_code=400, detail="Signature timestamp outside tolerance")

    digest = hmac.new(
        key=str(settings.stripe_webhook_secret).encode("utf-8"),
        msg=f"{ts}.".encode("utf-8") + raw_body,
        digestmod=hashlib.sha256,
    ).hexdigest()
    if not any(hmac.compare_digest(digest, sig) for sig in signatures):
        raise HTTPException(status_code=400, detail="Invalid signature")


def _stripe_get_subscription(subscription_id: str) -> dict:
    import requests

    if not settings.stripe_secret_key:
        raise HTTPException(status_code=500, detail="STRIPE_SECRET_KEY is not configured")
    resp = requests.get(
        f"https://api.stripe.com/v1/subscriptions/{subscription_id}",
        headers={"Authorization": f"Bearer {settings.stripe_secret_key}"},
        timeout=30,
    )
    if resp.status_code >= 400:
        raise HTTPException(status_code=502, detail=f"Stripe error ({resp.status_code})")
    return resp.json() or {}


def _first_item(sub_obj: dict) -> dict:
    items = ((sub_obj.get("items") or {}).get("data")) or []
    return items[0] if items and isinstance(items[0], dict) else {}


def _plan_from_subscription(sub_obj: dict) -> Plan:
    price_id = str(((_first_item(sub_obj).get("price") or {}).get("id")) or "").strip()
    if settings.stripe_enterprise_price_id and price_id == str(settings.stripe_enterprise_price_id):
        return Plan.ENTERPRISE
    if settings.stripe_pro_price_id and price_id != str(settings.stripe_pro_price_id):
        logger.warning("billing.webhook.unknown_price price_id=%s subscription=%s", price_id, sub_obj.get("id"))
    return Plan.PRO


def _period_from_subscription(sub_obj: dict) -> BillingPeriod | None:
    # Newer API versions moved the period fields onto the subscription item.
    item = _first_item(sub_obj)
    start = sub_obj.get("current_period_start") or item.get("current_period_start")
    end = sub_obj.get("current_period_end") or item.get("current_period_end")
    return period_from_timestamps(start, end)


def _period_from_invoice(invoice: dict) -> BillingPeriod | None:
    lines = ((invoice.get("lines") or {}).get("data")) or []
    for line in lines:
        period = (line or {}).get("period") or {}
        found = period_from_timestamps(period.get("start"), period.get("end"))
        if found is not None:
            return found
    return None


def _invoice_subscription_id(invoice: dict) -> str:
    sub_id = invoice.get("subscription")
    if not sub_id:
        details = ((invoice.get("parent") or {}).get("subscription_details")) or {}
        sub_id = details.get("subscription")
    if isinstance(sub_id, dict):
        sub_id = sub_id.get("id")
    return str(sub_id or "").strip()


def _metadata_user_id(obj: dict) -> str:
    meta = obj.get("metadata") or {}
    return str(meta.get("supabase_user_id") or meta.get("user_id") or "").strip()


def _handle_checkout_completed(db: Session, session: dict) -> str | None:
    user_id = _metadata_user_id(session) or str(session.get("client_reference_id") or "").strip()
    subscription_id = str(session.get("subscription") or "").strip()
    if not user_id or not subscription_id:
        logger.warning("billing.webhook.checkout.missing_refs user_id=%s subscription=%s", user_id, subscription_id)
        return None
    sub_obj = _stripe_get_subscription(subscription_id)
    period = _period_from_subscription(sub_obj)
    if period is None:
        raise HTTPException(status_code=502, detail="Stripe subscription has no billing period")
    subscription_activated(
        db,
        user_id=user_id,
        plan=_plan_from_subscription(sub_obj),
        period=period,
        customer_ref=str(session.get("customer") or "").strip() or None,
        subscription_ref=subscription_id,
        provider=PROVIDER,
    )
    return user_id


def _handle_subscription_updated(db: Session, sub_obj: dict) -> str | None:
    subscription_id = str(sub_obj.get("id") or "").strip()
    customer_id = str(sub_obj.get("customer") or "").strip()
    user_id = _metadata_user_id(sub_obj) or find_user_id(db, subscription_ref=subscription_id, customer_ref=customer_id)
    if not user_id:
        logger.warning("billing.webhook.subscription_updated.unknown_user subscription=%s", subscription_id)
        return None

    status = str(sub_obj.get("status") or "").strip().lower()
    if status in {"active", "trialing"}:
        period = _period_from_subscription(sub_obj)
        if period is None:
            raise HTTPException(status_code=400, detail="Subscription has no billing period")
        subscription_activated(
            db,
            user_id=user_id,
            plan=_plan_from_subscription(sub_obj),
            period=period,
            customer_ref=customer_id or None,
            subscription_ref=subscription_id or None,
            provider=PROVIDER,
        )
    elif status in {"past_due", "unpaid"}:
        payment_failed(db, user_id)
    elif status in {"canceled", "incomplete_expired"}:
        subscription_canceled(db, user_id)
    else:
        logger.info("billing.webhook.subscription_updated.ignored user_id=%s status=%s", user_id, status)
    return user_id


def _handle_subscription_deleted(db: Session, sub_obj: dict) -> str | None:
    subscription_id = str(sub_obj.get("id") or "").strip()
    customer_id = str(sub_obj.get("customer") or "").strip()
    user_id = _metadata_user_id(sub_obj) or find_user_id(db, subscription_ref=subscription_id, customer_ref=customer_id)
    if not user_id:
        logger.warning("billing.webhook.subscription_deleted.unknown_user subscription=%s", subscription_id)
        return None
    subscription_canceled(db, user_id)
    return user_id


def _handle_invoice_paid(db: Session, invoice: dict) -> str | None:
    subscription_id = _invoice_subscription_id(invoice)
    if not subscription_id:
        return None
    customer_id = str(invoice.get("customer") or "").strip()
    user_id = find_user_id(db, subscription_ref=subscription_id, customer_ref=customer_id)
    if not user_id:
        logger.warning("billing.webhook.invoice_paid.unknown_user subscription=%s", subscription_id)
        return None
    period = _period_from_invoice(invoice)
    if period is None:
        period = _period_from_subscription(_stripe_get_subscription(subscription_id))
    if period is None:
        raise HTTPException(status_code=502, detail="Stripe subscription has no billing period")
    subscription_renewed(db, user_id, period)
    return user_id


def _handle_invoice_failed(db: Session, invoice: dict) -> str | None:
    subscription_id = _invoice_subscription_id(invoice)
    if not subscription_id:
        return None
    customer_id = str(invoice.get("customer") or "").strip()
    user_id = find_user_id(db, subscription_ref=subscription_id, customer_ref=customer_id)
    if not user_id:
        logger.warning("billing.webhook.invoice_failed.unknown_user subscription=%s", subscription_id)
        return None
    payment_failed(db, user_id)
    return user_id


_HANDLERS = {
    "checkout.session.completed": _handle_checkout_completed,
    "customer.subscription.updated": _handle_subscription_updated,
    "customer.subscription.deleted": _handle_subscription_deleted,
    "invoice.payment_succeeded": _handle_invoice_paid,
    "invoice.paid": _handle_invoice_paid,
    "invoice.payment_failed": _handle_invoice_failed,
}


def _already_processed(db: Session, event_id: str) -> bool:
    return db.query(BillingEvent.id).filter(BillingEvent.event_id == event_id).first() is not None


def _record_event(db: Session, event_id: str, event_type: str, user_id: str | None) -> None:
    stmt = (
        dialect_insert(db, BillingEvent)
        .values(provider=PROVIDER, event_id=event_id, event_type=event_type, user_id=user_id)
        .on_conflict_do_nothing(index_elements=["event_id"])
    )
    db.execute(stmt)
    db.commit()


@router.post("/billing/webhook")
async def stripe_webhook(request: Request, db: Session = Depends(get_db)) -> dict:
    raw_body = await request.body()
    _verify_stripe_signature(raw_body, request.headers.get("stripe-signature"))
    try:
        payload: dict[str, Any] = (await request.json()) or {}
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON")

    event_id = str(payload.get("id") or "").strip()
    event_type = str(payload.get("type") or "").strip()
    obj = ((payload.get("data") or {}).get("object")) or {}
    handler = _HANDLERS.get(event_type)
    if handler is None:
        logger.info("billing.webhook.unhandled type=%s id=%s", event_type, event_id)
        return {"received": True}

    try:
        if event_id and _already_processed(db, event_id):
            logger.info("billing.webhook.duplicate type=%s id=%s", event_type, event_id)
            return {"received": True, "duplicate": True}

        user_id = handler(db, obj)
        if event_id:
            _record_event(db, event_id, event_type, user_id)
    except (InvalidPeriodState, ValueError) as exc:
        db.rollback()
        logger.error("billing.webhook.invalid_payload type=%s id=%s error=%s", event_type, event_id, exc)
        raise HTTPException(status_code=400, detail="Invalid event payload")
    except (QuotaError, SQLAlchemyError):
        db.rollback()
        logger.exception("billing.webhook.failed type=%s id=%s", event_type, event_id)
        raise HTTPException(status_code=500, detail="Webhook processing failed")

    logger.info("billing.webhook.applied type=%s id=%s user_id=%s", event_type, event_id, user_id)
    return {"received": True}
