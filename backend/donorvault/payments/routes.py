from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from flask import Blueprint, current_app, jsonify
from flask_jwt_extended import jwt_required, verify_jwt_in_request
from sqlalchemy.exc import IntegrityError

from ..common.audit import audit
from ..common.errors import APIError
from ..common.params import json_payload, optional_text, parse_amount
from ..common.rbac import current_user
from ..extensions import db
from ..models import Donation, DonationStatus, User
from .entitlements import folders_for_amount, grant_folder_access
from .gateway import PaymentGatewayError, PaymentIntentView, get_payment_gateway


payments_bp = Blueprint("payments", __name__, url_prefix="/payments/stripe")

CENTS = Decimal("100")


def _validate_amount(raw_amount: object) -> Decimal:
    amount = parse_amount(raw_amount, "amount")
    minimum = Decimal(str(current_app.config["DONATION_MIN_AMOUNT"]))
    maximum = Decimal(str(current_app.config["DONATION_MAX_AMOUNT"]))
    if amount < minimum or amount > maximum:
        raise APIError(400, "INVALID_AMOUNT", f"Amount must be between ${minimum} and ${maximum}.")
    return amount


def _existing_donation(provider: str, payment_id: str) -> Donation | None:
    return Donation.query.filter_by(payment_provider=provider, payment_id=payment_id).one_or_none()


def _record_donation(user: User, intent: PaymentIntentView, provider: str) -> tuple[Donation, bool]:
    existing = _existing_donation(provider, intent.id)
    if existing is not None:
        return existing, False

    donation = Donation(
        user_id=user.id,
        amount=Decimal(intent.amount) / CENTS,
        currency=intent.currency.upper(),
        payment_provider=provider,
        payment_id=intent.id,
        status=DonationStatus.COMPLETED.value,
    )
    try:
        with db.session.begin_nested():
            db.session.add(donation)
    except IntegrityError:
        # Another confirmation of the same intent won the race.
        existing = _existing_donation(provider, intent.id)
        if existing is None:
            raise
        return existing, False
    return donation, True


@payments_bp.post("/create-intent")
def create_intent():
    payload = json_payload()
    amount = _validate_amount(payload.get("amount"))
    currency = (optional_text(payload.get("currency")) or "usd").lower()

    verify_jwt_in_request()
    user = current_user(required=True)
    assert user is not None

    gateway = get_payment_gateway()
    try:
        intent = gateway.create_intent(
            amount_cents=int((amount * CENTS).quantize(Decimal("1"), rounding=ROUND_HALF_UP)),
            currency=currency,
            metadata={"userId": str(user.id)},
        )
    except PaymentGatewayError as error:
        current_app.logger.exception("payment intent creation failed for user_id=%s", user.id)
        raise APIError(500, "PAYMENT_PROVIDER_ERROR", "Failed to create payment intent.") from error

    return jsonify({"clientSecret": intent.client_secret, "paymentIntentId": intent.id})


@payments_bp.post("/confirm")
@jwt_required()
def confirm_donation():
    user = current_user(required=True)
    assert user is not None

    payload = json_payload()
    payment_intent_id = optional_text(payload.get("paymentIntentId"))
    if not payment_intent_id:
        raise APIError(400, "INVALID_PARAMETER", "paymentIntentId is required.")

    gateway = get_payment_gateway()
    try:
        intent = gateway.retrieve_intent(payment_intent_id)
    except PaymentGatewayError as error:
        current_app.logger.exception("payment intent lookup failed for %s", payment_intent_id)
        raise APIError(500, "PAYMENT_PROVIDER_ERROR", "Failed to confirm donation.") from error

    if intent.status != "succeeded":
        raise APIError(412, "PAYMENT_NOT_COMPLETED", "Payment not completed.", {"status": intent.status})

    owner_id = intent.metadata.get("userId")
    if owner_id is not None and owner_id != str(user.id):
        raise APIError(403, "FORBIDDEN", "This payment belongs to another user.")

    donation, created = _record_donation(user, intent, gateway.provider)
    if donation.user_id != user.id:
        db.session.rollback()
        raise APIError(403, "FORBIDDEN", "This payment belongs to another user.")

    # Only the first confirmation grants; a replay leaves revocations in place.
    granted: list[int] = []
    if created:
        for folder_id in folders_for_amount(Decimal(donation.amount)):
            if grant_folder_access(user.id, folder_id):
                granted.append(folder_id)

        audit(
            action="payments.donation_confirmed",
            actor=user,
            target_type="donation",
            target_id=str(donation.id),
            details={"amount": str(donation.amount), "currency": donation.currency, "granted_folders": granted},
        )
    db.session.commit()

    current_app.logger.info(
        "donation %s confirmed for user_id=%s (new=%s, granted=%s)",
        donation.id,
        user.id,
        created,
        granted,
    )
    return jsonify({"success": True, "donationId": donation.id})
