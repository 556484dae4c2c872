"""
Normalized payment gateway events.

The gateway adapter parses raw webhook payloads into one of these variants;
the reconciler only ever sees these, never the gateway's own schema.
"""

from typing import Annotated, Literal, Optional, Union
from pydantic import BaseModel, Field


class CredentialIssued(BaseModel):
    """A billing credential was authorized for a customer."""

    kind: Literal["credential_issued"] = "credential_issued"
    event_id: str
    customer_key: Optional[str] = None
    customer_ref: Optional[str] = None
    credential_ref: str


class ChargeSucceeded(BaseModel):
    """The gateway captured a payment."""

    kind: Literal["charge_succeeded"] = "charge_succeeded"
    event_id: str
    charge_ref: Optional[str] = None
    payment_ref: str
    customer_ref: Optional[str] = None
    amount_minor_units: int = 0
    plan_tier: Optional[str] = None


class ChargeFailed(BaseModel):
    """The gateway declined or failed a payment."""

    kind: Literal["charge_failed"] = "charge_failed"
    event_id: str
    charge_ref: Optional[str] = None
    payment_ref: str
    customer_ref: Optional[str] = None
    amount_minor_units: int = 0
    failure_code: Optional[str] = None
    failure_message: Optional[str] = None


class ChargeCanceled(BaseModel):
    """A captured payment was reversed at the gateway."""

    kind: Literal["charge_canceled"] = "charge_canceled"
    event_id: str
    charge_ref: Optional[str] = None
    payment_ref: str
    customer_ref: Optional[str] = None
    amount_minor_units: int = 0


class UnknownEvent(BaseModel):
    """Any event type the reconciler does not act on."""

    kind: Literal["unknown"] = "unknown"
    event_id: str
    event_type: str


GatewayEvent = Annotated[
    Union[CredentialIssued, ChargeSucceeded, ChargeFailed, ChargeCanceled, UnknownEvent],
    Field(discriminator="kind"),
]
