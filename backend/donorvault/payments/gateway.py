from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import stripe
from flask import current_app


class PaymentGatewayError(Exception):
    pass


@dataclass(frozen=True)
class PaymentIntentView:
    id: str
    status: str
    amount: int
    currency: str
    client_secret: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)


def _as_dict(value: Any) -> dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, dict):
        return value
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return dict(value)


def _intent_view(intent: Any) -> PaymentIntentView:
    metadata = _as_dict(getattr(intent, "metadata", None))
    return PaymentIntentView(
        id=intent.id,
        status=intent.status,
        amount=int(intent.amount),
        currency=str(intent.currency),
        client_secret=getattr(intent, "client_secret", None),
        metadata={str(key): str(value) for key, value in metadata.items()},
    )


class StripeGateway:
    provider = "stripe"

    def __init__(self, api_key: str) -> None:
        self._api_key = api_key

    def _require_key(self) -> str:
        if not self._api_key:
            raise PaymentGatewayError("STRIPE_SECRET_KEY is not configured")
        return self._api_key

    def create_intent(self, amount_cents: int, currency: str, metadata: dict[str, str]) -> PaymentIntentView:
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount_cents,
                currency=currency,
                metadata=metadata,
                api_key=self._require_key(),
            )
        except stripe.StripeError as error:
            raise PaymentGatewayError(str(error)) from error
        return _intent_view(intent)

    def retrieve_intent(self, intent_id: str) -> PaymentIntentView:
        try:
            intent = stripe.PaymentIntent.retrieve(intent_id, api_key=self._require_key())
        except stripe.StripeError as error:
            raise PaymentGatewayError(str(error)) from error
        return _intent_view(intent)


def get_payment_gateway() -> StripeGateway:
    return current_app.extensions["payment_gateway"]
