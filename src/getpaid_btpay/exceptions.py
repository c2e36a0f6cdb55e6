"""Error taxonomy for the BT PSD2 client.

Every failure leaving :class:`~getpaid_btpay.client.BTPayClient` is one of
the classes below. Callers discriminate on the ``kind`` attribute (or the
class) and never have to parse messages::

    match err.kind:
        case ErrorKind.AUTHENTICATION: ...
        case ErrorKind.NETWORK: ...
"""

from enum import StrEnum
from enum import unique
from typing import Any
from typing import ClassVar
from typing import NamedTuple

import httpx
from getpaid_core.exceptions import GetPaidException


@unique
class ErrorKind(StrEnum):
    AUTHENTICATION = "authentication"
    VALIDATION = "validation"
    NETWORK = "network"
    GENERIC = "generic"


class BTPayError(GetPaidException):
    """Base class; ``kind`` is fixed per subclass."""

    kind: ClassVar[ErrorKind] = ErrorKind.GENERIC
    default_status: ClassVar[int] = 0

    def __init__(
        self,
        message: str,
        status: int | None = None,
        payload: Any = None,
    ) -> None:
        self.message = message
        self.status = self.default_status if status is None else status
        self.payload = payload
        super().__init__(
            message,
            context={
                "kind": self.kind,
                "status": self.status,
                "payload": payload,
            },
        )


class ApiError(BTPayError):
    """The API (or the request setup) failed."""


class AuthenticationError(ApiError):
    kind = ErrorKind.AUTHENTICATION
    default_status = 401


class PaymentInitiationError(ApiError):
    """Payment creation failed for a reason outside the HTTP exchange."""


class NetworkError(BTPayError):
    """The request was sent but no response came back."""

    kind = ErrorKind.NETWORK


class ValidationError(BTPayError):
    """Caller input rejected before anything was sent.

    :param errors: mapping of field path to a list of messages.
    """

    kind = ErrorKind.VALIDATION

    def __init__(
        self,
        message: str,
        errors: dict[str, list[str]] | None = None,
    ) -> None:
        self.errors = errors or {}
        super().__init__(message, status=0, payload=self.errors)


def decode_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


def classify_response(response: httpx.Response) -> ApiError | None:
    """Return the error for an unsuccessful response, else None."""
    if response.status_code < 400:
        return None
    payload = decode_body(response)
    if response.status_code == 401:
        return AuthenticationError(
            "API Error: 401",
            status=401,
            payload=payload,
        )
    return ApiError(
        f"API Error: {response.status_code}",
        status=response.status_code,
        payload=payload,
    )


NO_RESPONSE_ERRORS = (
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
)


def classify_transport_error(exc: Exception) -> BTPayError:
    """Classify an httpx failure raised before a response arrived."""
    if isinstance(exc, NO_RESPONSE_ERRORS):
        return NetworkError("No response received", payload=str(exc))
    return ApiError("Request error", status=0, payload=str(exc))


class ErrorDetails(NamedTuple):
    message: str
    code: str | None
    is_recoverable: bool


def describe_error(error: BaseException | None) -> ErrorDetails | None:
    """Summarize an error for display.

    4xx responses other than 401 and 403 are considered recoverable by
    correcting the input. The code comes from the first ``tppMessages``
    entry in the response payload.
    """
    if error is None:
        return None
    if not isinstance(error, BTPayError):
        return ErrorDetails(str(error), None, False)

    code = None
    payload = error.payload
    if isinstance(payload, dict):
        messages = payload.get("tppMessages")
        if isinstance(messages, list) and messages:
            code = messages[0].get("code")
    status = error.status
    recoverable = 400 <= status < 500 and status not in (401, 403)
    return ErrorDetails(error.message, code, recoverable)
