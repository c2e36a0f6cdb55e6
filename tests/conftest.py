"""Shared test fixtures for getpaid-btpay."""

from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from getpaid_core.enums import PaymentStatus
from getpaid_core.fsm import create_payment_machine


SANDBOX_URL = "https://api.apistorebt.ro/bt/sb/bt-psd2"
PRODUCTION_URL = "https://api.apistorebt.ro/bt/prd/bt-psd2"
TOKEN_URL = f"{SANDBOX_URL}/oauth2/token"
CREDITOR_IBAN = "RO98BTRLEURCRT0ABCDEFGHI"


def ron_payment(amount: str = "100", **extra) -> dict:
    """A valid ron-payment body."""
    return {
        "instructedAmount": {"currency": "RON", "amount": amount},
        "creditorAccount": {"iban": CREDITOR_IBAN},
        "creditorName": "Test Recipient",
        **extra,
    }


class FakeTimer:
    def __init__(self, scheduler, delay, callback) -> None:
        self.scheduler = scheduler
        self.delay = delay
        self.when = scheduler.time + delay
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Scheduler running on virtual time.

    Nothing fires until :meth:`advance` is awaited.
    """

    def __init__(self) -> None:
        self.time = 1000.0
        self._timers: list[FakeTimer] = []

    def now(self) -> float:
        return self.time

    def schedule(self, delay, callback) -> FakeTimer:
        timer = FakeTimer(self, delay, callback)
        self._timers.append(timer)
        return timer

    @property
    def pending(self) -> list[FakeTimer]:
        return [t for t in self._timers if not t.cancelled]

    async def advance(self, seconds: float) -> None:
        target = self.time + seconds
        while True:
            due = [t for t in self.pending if t.when <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.when)
            self._timers.remove(timer)
            self.time = timer.when
            await timer.callback()
        self.time = target


@pytest.fixture
def scheduler():
    return FakeScheduler()


def make_mock_payment(
    *,
    payment_id: str = "test-payment-123",
    external_id: str = "",
    amount: Decimal = Decimal("100.00"),
    currency: str = "RON",
    status: str = PaymentStatus.NEW,
) -> MagicMock:
    """Create a mock payment satisfying the Payment protocol."""
    order = MagicMock()
    order.get_total_amount.return_value = amount
    order.get_buyer_info.return_value = {
        "email": "ion@example.com",
        "first_name": "Ion",
        "last_name": "Popescu",
    }
    order.get_description.return_value = "Test order"
    order.get_currency.return_value = currency
    order.get_return_url.return_value = "https://shop.example.com/success"

    payment = MagicMock()
    payment.id = payment_id
    payment.order = order
    payment.amount_required = amount
    payment.currency = currency
    payment.status = status
    payment.backend = "btpay"
    payment.external_id = external_id
    payment.description = "Test order"
    payment.amount_paid = Decimal("0")
    payment.amount_locked = Decimal("0")
    payment.amount_refunded = Decimal("0")
    payment.fraud_status = "unknown"
    payment.fraud_message = ""

    # Needed by FSM guards
    payment.is_fully_paid.return_value = True
    payment.is_fully_refunded.return_value = False

    return payment


class FakePayment:
    """A real object for FSM tests.

    MagicMock cannot be used with ``transitions`` because it
    responds to ``hasattr`` for every attribute, causing the
    library to skip binding trigger methods.
    """

    def __init__(
        self,
        *,
        payment_id: str = "test-payment-123",
        external_id: str = "PAY-1",
        amount: Decimal = Decimal("100.00"),
        currency: str = "RON",
        status: str = PaymentStatus.NEW,
        is_fully_paid: bool = True,
        is_fully_refunded: bool = False,
    ) -> None:
        self.id = payment_id
        self.order = MagicMock()
        self.order.get_total_amount.return_value = amount
        self.order.get_currency.return_value = currency
        self.amount_required = amount
        self.currency = currency
        self.status = status
        self.backend = "btpay"
        self.external_id = external_id
        self.description = "Test order"
        self.amount_paid = Decimal("0")
        self.amount_locked = Decimal("0")
        self.amount_refunded = Decimal("0")
        self.fraud_status = "unknown"
        self.fraud_message = ""
        self._is_fully_paid = is_fully_paid
        self._is_fully_refunded = is_fully_refunded

    def is_fully_paid(self) -> bool:
        return self._is_fully_paid

    def is_fully_refunded(self) -> bool:
        return self._is_fully_refunded


@pytest.fixture
def mock_payment():
    """Fresh mock payment in NEW status."""
    return make_mock_payment()


@pytest.fixture
def mock_payment_with_fsm():
    """Mock payment with FSM attached (has trigger methods)."""
    payment = FakePayment()
    create_payment_machine(payment)
    return payment


BTPAY_CONFIG = {
    "api_key": "test-api-key-abc123",
    "sandbox": True,
    "creditor_iban": CREDITOR_IBAN,
    "creditor_name": "Example Shop SRL",
    "creditor_agent": "BTRLRO22",
    "creditor_agent_name": "Banca Transilvania",
    "creditor_country": "RO",
    "url_return": ("https://shop.example.com/payments/success/{payment_id}"),
}


@pytest.fixture
def btpay_config():
    return BTPAY_CONFIG.copy()
