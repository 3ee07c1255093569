"""Pytest bootstrap configuration.

Provider selection is pinned to the in-memory provider before any module reads
payment settings; shared fixtures seed an in-memory ledger with one requester,
two travelers and one delivery request.
"""
import os
from decimal import Decimal

os.environ.setdefault("PAYMENT__DEFAULT_PROVIDER", "fake")
os.environ.setdefault("DEBUG", "false")

import pytest

from application.services.payment_service import PaymentEngine
from core.settings import PaymentSettings
from domain.delivery.entity import DeliveryRequest, RequestItem
from domain.user.entity import User
from infrastructure.external.payments.fake_client import FakePaymentGateway
from infrastructure.memory import InMemoryStore, memory_uow_factory


REQUEST_ID = "req_1"
REQUESTER_CUSTOMER = "cus_requester"


class RecordingNotifier:
    def __init__(self):
        self.events = []

    async def notify(self, event):
        self.events.append(event)

    @property
    def names(self):
        return [e.name for e in self.events]


@pytest.fixture
def settings():
    return PaymentSettings(default_provider="fake", currency="USD", timeouts={"total": 2.0})


@pytest.fixture
def store():
    store = InMemoryStore()
    store.add_user(User(id="u_requester", email="requester@example.com", customer_id=REQUESTER_CUSTOMER))
    store.add_user(User(id="u_traveler", email="traveler@example.com", payout_account_id="acct_traveler"))
    store.add_user(User(id="u_no_payout", email="nopayout@example.com"))
    store.add_request(
        DeliveryRequest(
            id=REQUEST_ID,
            requester_id="u_requester",
            trip_id="trip_1",
            delivery_fee=Decimal("5.00"),
            items=[RequestItem(name="Coffee beans", quantity=2, estimated_price=Decimal("10.99"))],
        )
    )
    return store


@pytest.fixture
def gateway(settings):
    return FakePaymentGateway(settings)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def engine(gateway, store, notifier, settings):
    return PaymentEngine(gateway, memory_uow_factory(store), notifier=notifier, settings=settings)


@pytest.fixture
def make_authorized(engine, gateway):
    async def _make(amount="100.00", request_id=REQUEST_ID):
        payment = await engine.authorize_payment(request_id, amount, REQUESTER_CUSTOMER)
        gateway.confirm_intent(payment.provider_intent_id)
        return await engine.confirm_authorization(payment.id)

    return _make


@pytest.fixture
def make_captured(engine, make_authorized):
    async def _make(amount="100.00"):
        payment = await make_authorized(amount)
        return await engine.capture_payment(payment.id)

    return _make
