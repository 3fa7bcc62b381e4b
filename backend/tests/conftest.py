from __future__ import annotations

from itertools import count
from pathlib import Path
from urllib.parse import urlparse

import pytest

from donorvault import create_app
from donorvault.bootstrap import bootstrap_defaults
from donorvault.common.rate_limit import login_rate_limiter
from donorvault.extensions import db
from donorvault.models import User
from donorvault.payments.gateway import PaymentGatewayError, PaymentIntentView


class FakeGateway:
    provider = "stripe"

    def __init__(self) -> None:
        self.intents: dict[str, PaymentIntentView] = {}
        self.created: list[dict] = []
        self._ids = count(1)

    def add_intent(
        self,
        amount_cents: int,
        status: str = "succeeded",
        user_id: int | None = None,
        currency: str = "usd",
    ) -> str:
        intent_id = f"pi_test_{next(self._ids)}"
        metadata = {"userId": str(user_id)} if user_id is not None else {}
        self.intents[intent_id] = PaymentIntentView(
            id=intent_id,
            status=status,
            amount=amount_cents,
            currency=currency,
            client_secret=f"{intent_id}_secret",
            metadata=metadata,
        )
        return intent_id

    def create_intent(self, amount_cents: int, currency: str, metadata: dict[str, str]) -> PaymentIntentView:
        intent_id = f"pi_test_{next(self._ids)}"
        intent = PaymentIntentView(
            id=intent_id,
            status="requires_payment_method",
            amount=amount_cents,
            currency=currency,
            client_secret=f"{intent_id}_secret",
            metadata=dict(metadata),
        )
        self.intents[intent_id] = intent
        self.created.append({"amount": amount_cents, "currency": currency, "metadata": dict(metadata)})
        return intent

    def retrieve_intent(self, intent_id: str) -> PaymentIntentView:
        if intent_id not in self.intents:
            raise PaymentGatewayError(f"No such payment_intent: {intent_id}")
        return self.intents[intent_id]


@pytest.fixture
def app(tmp_path: Path):
    db_path = tmp_path / "test.db"
    storage_path = tmp_path / "storage"

    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
            "STORAGE_BACKEND": "local",
            "STORAGE_ROOT": str(storage_path),
            "PUBLIC_BASE_URL": "http://localhost",
            "JWT_SECRET_KEY": "test-secret-key-at-least-32-bytes-long",
            "STRIPE_SECRET_KEY": "sk_test_dummy",
        }
    )
    app.extensions["payment_gateway"] = FakeGateway()
    login_rate_limiter.clear()

    with app.app_context():
        db.create_all()
        bootstrap_defaults(commit=True)

        admin = User(email="admin@example.com", first_name="Ada", last_name="Admin", language="es", is_admin=True)
        admin.set_password("adminpass")
        alice = User(email="alice@example.com", first_name="Alice", last_name="Donor", language="es", is_admin=False)
        alice.set_password("alicepass")

        db.session.add_all([admin, alice])
        db.session.commit()

    yield app

    login_rate_limiter.clear()
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def gateway(app) -> FakeGateway:
    return app.extensions["payment_gateway"]


def login(client, email: str, password: str) -> dict[str, str]:
    response = client.post("/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.get_json()
    return {"Authorization": f"Bearer {response.get_json()['token']}"}


@pytest.fixture
def admin_headers(client) -> dict[str, str]:
    return login(client, "admin@example.com", "adminpass")


@pytest.fixture
def alice_headers(client) -> dict[str, str]:
    return login(client, "alice@example.com", "alicepass")


def user_id(app, email: str) -> int:
    with app.app_context():
        return User.query.filter_by(email=email).one().id


def local_path(url: str) -> str:
    """Strip scheme and host so the test client can follow a signed URL."""
    return urlparse(url).path
