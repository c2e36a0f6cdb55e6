"""BT PSD2 payment-initiation API types and enums."""

import uuid
from dataclasses import dataclass
from dataclasses import field
from enum import StrEnum
from enum import unique
from typing import NotRequired
from typing import TypedDict

from .exceptions import ValidationError


SANDBOX_URL = "https://api.apistorebt.ro/bt/sb/bt-psd2"
PRODUCTION_URL = "https://api.apistorebt.ro/bt/prd/bt-psd2"

DEFAULT_TOKEN_LIFETIME = 3600
DEFAULT_PSU_IP_ADDRESS = "127.0.0.1"


@unique
class Environment(StrEnum):
    SANDBOX = "sandbox"
    PRODUCTION = "production"


@unique
class PaymentService(StrEnum):
    """Payment service path segment."""

    SINGLE = "payments"
    PERIODIC = "periodic-payments"
    BULK = "bulk-payments"


@unique
class PaymentProduct(StrEnum):
    """Payment product path segment."""

    RON = "ron-payment"
    OTHER_CURRENCY = "other-currency-payment"


@unique
class Currency(StrEnum):
    """Currencies accepted by the BT PISP API."""

    RON = "RON"
    EUR = "EUR"
    USD = "USD"
    GBP = "GBP"


@unique
class TransactionStatus(StrEnum):
    """ISO 20022 transaction status codes."""

    RCVD = "RCVD"  # Received
    ACTC = "ACTC"  # AcceptedTechnicalValidation
    ACCP = "ACCP"  # AcceptedCustomerProfile
    ACWC = "ACWC"  # AcceptedWithChange
    ACFC = "ACFC"  # AcceptedFundsChecked
    ACSC = "ACSC"  # AcceptedSettlementCompleted
    RJCT = "RJCT"  # Rejected
    PDNG = "PDNG"  # Pending
    CANC = "CANC"  # Cancelled

    @classmethod
    def is_terminal(cls, value: str | None) -> bool:
        """Return True if no further status change is expected."""
        return value in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {
        TransactionStatus.ACSC,
        TransactionStatus.RJCT,
        TransactionStatus.CANC,
    }
)


def get_base_url(environment: Environment | str) -> str:
    """Resolve the API root for an environment.

    :raises ValueError: for anything but sandbox or production.
    """
    env = Environment(environment)
    if env is Environment.PRODUCTION:
        return PRODUCTION_URL
    return SANDBOX_URL


# --- TypedDicts for API payloads ---


class Account(TypedDict):
    iban: str


class Amount(TypedDict):
    currency: str
    amount: str


class Address(TypedDict, total=False):
    country: str
    city: str
    street: str
    buildingNumber: str


class RonPayment(TypedDict):
    """Body for POST /v2/{service}/ron-payment."""

    instructedAmount: Amount
    creditorAccount: Account
    creditorName: str
    debtorAccount: NotRequired[Account]
    debtorId: NotRequired[str]
    endToEndIdentification: NotRequired[str]
    remittanceInformationUnstructured: NotRequired[str]


class OtherCurrencyPayment(TypedDict):
    """Body for POST /v2/{service}/other-currency-payment."""

    instructedAmount: Amount
    creditorAccount: Account
    creditorAgent: str  # BIC/SWIFT
    creditorAgentName: str
    creditorName: str
    creditorAddress: Address
    debtorAccount: NotRequired[Account]
    endToEndIdentification: NotRequired[str]
    remittanceInformationUnstructured: NotRequired[str]


class BulkPaymentItem(TypedDict):
    instructedAmount: Amount
    creditorAccount: Account
    creditorName: str
    debtorId: NotRequired[str]
    endToEndIdentification: NotRequired[str]
    remittanceInformationUnstructured: NotRequired[str]


class BulkPaymentInitiation(TypedDict):
    """Body for POST /v2/bulk-payments/ron-payment."""

    payments: list[BulkPaymentItem]
    debtorAccount: NotRequired[Account]


class BulkPaymentConfirmation(TypedDict):
    """Body for POST /v2/bulk-payments/{product}/confirmation."""

    paymentBulkId: str


class TppMessage(TypedDict):
    category: str
    code: str
    text: str


class Link(TypedDict):
    href: str


class PaymentInitiationResponse(TypedDict):
    """Response from POST /v2/{service}/{product}."""

    paymentId: str
    transactionStatus: str
    psuMessage: NotRequired[str]
    tppMessages: NotRequired[list[TppMessage]]
    _links: NotRequired[dict[str, Link]]


class PaymentStatusResponse(TypedDict):
    """Response from GET /v2/{service}/{product}/{paymentId}/status."""

    transactionStatus: str


class TokenResponse(TypedDict, total=False):
    """Response from POST /oauth2/token."""

    access_token: str
    expires_in: int
    token_type: str


PaymentBody = RonPayment | OtherCurrencyPayment | BulkPaymentInitiation


# --- value objects ---


@dataclass(frozen=True)
class ClientConfig:
    """Immutable client configuration.

    ``token_refresh_interval`` is the lead time, in seconds, between the
    scheduled token refresh and the token's expiry. ``refresh_retry_delay``
    reschedules a failed timed refresh after that many seconds; ``None``
    leaves the token as is until the next request notices the expiry.
    """

    api_key: str
    environment: Environment = Environment.SANDBOX
    token_refresh_interval: float = 60
    auto_refresh_token: bool = True
    refresh_retry_delay: float | None = None

    def __post_init__(self) -> None:
        if not self.api_key:
            raise ValidationError(
                "Invalid client configuration",
                errors={"api_key": ["This field is required."]},
            )
        object.__setattr__(self, "environment", Environment(self.environment))

    @property
    def base_url(self) -> str:
        return get_base_url(self.environment)


@dataclass(frozen=True)
class PaymentRequest:
    """Single payment creation call."""

    service: PaymentService
    product: PaymentProduct | str
    payment: PaymentBody
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    psu_ip_address: str = DEFAULT_PSU_IP_ADDRESS
    psu_geo_location: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "service", PaymentService(self.service))
        if not self.request_id:
            object.__setattr__(self, "request_id", str(uuid.uuid4()))

    @property
    def path(self) -> str:
        return f"/v2/{self.service}/{self.product}"

    def headers(self) -> dict[str, str]:
        """Headers sent with the creation request."""
        headers = {
            "X-Request-ID": self.request_id,
            "PSU-IP-Address": self.psu_ip_address or DEFAULT_PSU_IP_ADDRESS,
        }
        if self.psu_geo_location:
            headers["PSU-Geo-Location"] = self.psu_geo_location
        return headers
