# storefront/routes/webhooks.py
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from storefront.database import get_db, transaction
from storefront.errors import AppError, ValidationError
from storefront.utils.audit import write_log
from storefront.utils.events import get_event
from storefront.utils.settlement import handle_checkout_completed, handle_checkout_expired
from storefront.utils.stripe_client import SignatureVerificationError, StripeClient, get_payment_client

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])
logger = logging.getLogger(__name__)

HANDLERS = {
    "checkout.session.completed": handle_checkout_completed,
    "checkout.session.expired": handle_checkout_expired,
}


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
    payment_client: StripeClient = Depends(get_payment_client),
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
):
    event = get_event(request)
    if stripe_signature is None:
        event.error("BadRequest", "Missing Stripe-Signature header")
        raise ValidationError("Missing Stripe-Signature header")

    body = await request.body()
    try:
        payload = payment_client.construct_event(body, stripe_signature)
    except SignatureVerificationError as e:
        logger.warning("Stripe signature verification failed: %s", e)
        event.error("BadRequest", "Invalid signature", detail=str(e))
        raise ValidationError("Invalid signature")

    event_type = payload.get("type")
    session_obj = (payload.get("data") or {}).get("object") or {}
    event.set(webhook_event_id=payload.get("id"), webhook_event_type=event_type)

    handler = HANDLERS.get(event_type)
    if handler is None:
        logger.info("Unhandled Stripe event type %s", event_type)
        with transaction(db):
            write_log(
                db, action="WEBHOOK_UNHANDLED", resource="webhooks", actor="provider", status="IGNORED",
                request_id=event.request_id, meta={"event_id": payload.get("id"), "type": event_type},
            )
        return {"received": True}

    try:
        # Field encryption and the DB work are blocking
        await run_in_threadpool(handler, db, session_obj, event)
    except AppError:
        raise
    except Exception:
        logger.exception("CRITICAL: failed to process Stripe event %s (%s)", payload.get("id"), event_type)
        raise
    return {"received": True}
