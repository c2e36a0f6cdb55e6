"""Local checks run on payment payloads before they are sent."""

from decimal import Decimal
from decimal import InvalidOperation
from typing import Any

from .exceptions import ValidationError
from .types import Currency
from .types import PaymentProduct
from .types import PaymentService


REQUIRED = "This field is required."


def _check_amount(amount: Any, prefix: str, errors: dict) -> None:
    if not isinstance(amount, dict):
        errors.setdefault(prefix, []).append(REQUIRED)
        return
    currency = amount.get("currency")
    if not currency:
        errors.setdefault(f"{prefix}.currency", []).append(REQUIRED)
    elif currency not in Currency.__members__:
        errors.setdefault(f"{prefix}.currency", []).append(
            f"Unsupported currency {currency!r}."
        )
    value = amount.get("amount")
    if value in (None, ""):
        errors.setdefault(f"{prefix}.amount", []).append(REQUIRED)
        return
    try:
        parsed = Decimal(str(value))
    except InvalidOperation:
        errors.setdefault(f"{prefix}.amount", []).append(
            "Enter a valid decimal amount."
        )
        return
    if not parsed.is_finite() or parsed <= 0:
        errors.setdefault(f"{prefix}.amount", []).append(
            "Amount must be greater than zero."
        )


def _check_credit_transfer(item: Any, prefix: str, errors: dict) -> None:
    _check_amount(
        item.get("instructedAmount"),
        f"{prefix}instructedAmount",
        errors,
    )
    account = item.get("creditorAccount")
    if not isinstance(account, dict) or not account.get("iban"):
        errors.setdefault(f"{prefix}creditorAccount.iban", []).append(REQUIRED)
    if not item.get("creditorName"):
        errors.setdefault(f"{prefix}creditorName", []).append(REQUIRED)


def validate_payment(
    payment: Any,
    service: PaymentService | str = PaymentService.SINGLE,
    product: PaymentProduct | str = PaymentProduct.RON,
) -> None:
    """Validate a payment body for the given service and product.

    :raises ValidationError: with a field -> messages map.
    """
    errors: dict[str, list[str]] = {}
    if not isinstance(payment, dict):
        raise ValidationError(
            "Invalid payment data",
            errors={"payment": ["Expected an object."]},
        )

    if service == PaymentService.BULK:
        items = payment.get("payments")
        if not isinstance(items, list) or not items:
            errors.setdefault("payments", []).append(
                "At least one payment is required."
            )
        else:
            for index, item in enumerate(items):
                if not isinstance(item, dict):
                    errors.setdefault(f"payments[{index}]", []).append(
                        "Expected an object."
                    )
                    continue
                _check_credit_transfer(item, f"payments[{index}].", errors)
    else:
        _check_credit_transfer(payment, "", errors)
        if product == PaymentProduct.OTHER_CURRENCY:
            for name in ("creditorAgent", "creditorAgentName"):
                if not payment.get(name):
                    errors.setdefault(name, []).append(REQUIRED)
            address = payment.get("creditorAddress")
            if not isinstance(address, dict) or not address.get("country"):
                errors.setdefault("creditorAddress.country", []).append(
                    REQUIRED
                )

    if errors:
        raise ValidationError("Invalid payment data", errors=errors)
