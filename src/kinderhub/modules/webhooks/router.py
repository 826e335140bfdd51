"""
Webhooks Router

Endpoints:
- POST /webhooks/payfast - PayFast ITN (form-encoded)
- POST /webhooks/stripe - Stripe events (raw JSON, Stripe-Signature header)

Both endpoints answer 200 whatever the outcome, so gateways do not keep
redelivering notifications that will never apply. The outcome is stored
in ``payment_logs``.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from kinderhub.core.config import settings
from kinderhub.core.database import get_db
from kinderhub.modules.webhooks import service

logger = logging.getLogger(__name__)

router = APIRouter()


def client_ip(request: Request) -> str | None:
    """
    Caller IP as seen by the outermost trusted proxy.

    Each trusted proxy appends the address it received the request from,
    so the hop at ``trusted_proxy_hops`` counted from the right is the
    real client. Hops to its left were supplied by the caller.
    """
    peer = request.client.host if request.client else None
    hops = settings.trusted_proxy_hops
    forwarded = request.headers.get("x-forwarded-for")
    if hops <= 0 or not forwarded:
        return peer

    addresses = [address.strip() for address in forwarded.split(",") if address.strip()]
    if not addresses:
        return peer
    return addresses[-min(hops, len(addresses))]


@router.post("/payfast")
async def payfast_itn(request: Request, db: AsyncSession = Depends(get_db)) -> dict[str, Any]:
    source_ip = client_ip(request)
    try:
        form = await request.form()
        data = {key: str(value) for key, value in form.items()}
        log = await service.handle_payfast_itn(db, data, source_ip)
    except Exception as e:
        logger.error(f"PayFast ITN from {source_ip} could not be handled: {e}", exc_info=True)
        await db.rollback()
        return {"received": True, "processed": False}

    return {"received": True, "processed": log.processed}


@router.post("/stripe")
async def stripe_webhook(request: Request, db: AsyncSession = Depends(get_db)) -> dict[str, Any]:
    source_ip = client_ip(request)
    try:
        payload = await request.body()
        log = await service.handle_stripe_event(
            db, payload, request.headers.get("stripe-signature"), source_ip
        )
    except Exception as e:
        logger.error(f"Stripe webhook from {source_ip} could not be handled: {e}", exc_info=True)
        await db.rollback()
        return {"received": True, "processed": False}

    return {"received": True, "processed": log.processed}
