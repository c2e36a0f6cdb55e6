"""Banca Transilvania PSD2 payment initiation for python-getpaid."""

# Lazy imports keep ``import getpaid_btpay`` free of the getpaid
# processor machinery for plain client users.

__all__ = [
    "BTPayClient",
    "BTPayProcessor",
    "BTPayStore",
    "StatusPoller",
]


def __getattr__(name: str):  # noqa: N807
    if name == "BTPayClient":
        from getpaid_btpay.client import BTPayClient

        return BTPayClient
    if name == "BTPayProcessor":
        from getpaid_btpay.processor import BTPayProcessor

        return BTPayProcessor
    if name == "BTPayStore":
        from getpaid_btpay.store import BTPayStore

        return BTPayStore
    if name == "StatusPoller":
        from getpaid_btpay.polling import StatusPoller

        return StatusPoller
    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)
