"""
Payment gateway webhook handler.

Verifies the signature, parses the payload into a gateway event and hands it
to the event reconciler. Duplicate deliveries are acknowledged with 200 so
the gateway stops retrying; processing failures return 500 so it retries.
"""

from fastapi import Request, HTTPException, status

from common.core.exceptions import ValidationError
from common.core.otel_axiom_exporter import get_logger
from packages.billing.container import BillingServices
from packages.billing.exceptions import SignatureVerificationError

logger = get_logger(__name__)

SIGNATURE_HEADER = "stripe-signature"


async def handle_gateway_webhook(
    request: Request, services: BillingServices
) -> dict[str, str]:
    """
    Handle incoming webhook from the payment gateway.

    Validates webhook signature and routes the event to the reconciler.
    """
    payload_bytes = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)

    try:
        event = services.gateway.parse_event(payload_bytes, signature)
    except SignatureVerificationError:
        raise
    except ValidationError as e:
        logger.error("Invalid gateway webhook payload", extra={"error": str(e)})
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid webhook payload"
        )

    logger.info(
        f"Received gateway webhook: {event.kind}",
        extra={"event_id": event.event_id, "event_kind": event.kind},
    )

    try:
        result = await services.reconciler.reconcile(event)
    except Exception as e:
        logger.error(
            f"Failed to process gateway webhook: {str(e)}",
            extra={"event_id": event.event_id, "error": str(e)},
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook processing failed",
        )

    return {"status": "success", "outcome": result.outcome.value}
