"""Observable client state for presentation layers.

:class:`BTPayStore` owns a :class:`~getpaid_btpay.client.BTPayClient` and
exposes the state a UI needs (authentication, loading flag, last error,
last payment response and status). Listeners registered with
:meth:`BTPayStore.subscribe` are called with the store after every
change; framework bindings only have to forward that notification.
"""

import logging
from collections.abc import Callable
from typing import Any

from .client import BTPayClient
from .exceptions import AuthenticationError
from .exceptions import ErrorDetails
from .exceptions import describe_error
from .polling import DEFAULT_INTERVAL
from .polling import DEFAULT_MAX_ATTEMPTS
from .polling import StatusPoller
from .types import PaymentBody
from .types import PaymentInitiationResponse
from .types import PaymentProduct
from .types import PaymentRequest
from .types import PaymentService
from .types import PaymentStatusResponse


Listener = Callable[["BTPayStore"], None]


class BTPayStore:
    """State container around a single client."""

    def __init__(
        self,
        client: BTPayClient,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self.client = client
        self.logger = logger or logging.getLogger(__name__)
        self.is_authenticated = False
        self.is_loading = False
        self.error: Exception | None = None
        self.payment_response: PaymentInitiationResponse | None = None
        self.payment_status: PaymentStatusResponse | None = None
        self.poller: StatusPoller | None = None
        self._listeners: list[Listener] = []

    @classmethod
    def from_options(cls, **options) -> "BTPayStore":
        """Create the client from ``BTPayClient`` keyword arguments."""
        logger = options.get("logger")
        return cls(BTPayClient(**options), logger=logger)

    @property
    def error_details(self) -> ErrorDetails | None:
        return describe_error(self.error)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a function removing it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                self.logger.exception("Store listener %r failed", listener)

    def _update(self, **changes: Any) -> None:
        for name, value in changes.items():
            setattr(self, name, value)
        self._notify()

    async def _run(self, operation, *args, **kwargs):
        self._update(is_loading=True, error=None)
        try:
            result = await operation(*args, **kwargs)
        except Exception as exc:
            self.logger.debug("%s failed: %s", operation.__name__, exc)
            self._update(is_loading=False, error=exc)
            raise
        self._update(is_loading=False)
        return result

    async def open(self, *, auto_authenticate: bool = True) -> None:
        """Enter the client's connection context and optionally log in.

        An authentication failure is recorded in :attr:`error` rather
        than raised, so a UI can render it. Calling it again while the
        connection is open only re-runs authentication.
        """
        if not self.client.is_open:
            await self.client.__aenter__()
        if auto_authenticate:
            try:
                await self.authenticate()
            except Exception:
                self.logger.warning("Automatic authentication failed")

    async def authenticate(self) -> bool:
        try:
            authenticated = await self._run(self.client.authenticate)
        except Exception:
            self._update(is_authenticated=False)
            raise
        if authenticated:
            self._update(is_authenticated=True)
        else:
            self._update(
                is_authenticated=False,
                error=AuthenticationError("Authentication failed"),
            )
        return authenticated

    async def initiate_payment(
        self,
        payment: PaymentBody,
        *,
        product: PaymentProduct | str = PaymentProduct.RON,
        service: PaymentService | str = PaymentService.SINGLE,
        request_id: str | None = None,
        psu_ip_address: str | None = None,
        psu_geo_location: str | None = None,
    ) -> PaymentInitiationResponse:
        request_kwargs: dict[str, Any] = {
            "service": service,
            "product": product,
            "payment": payment,
            "psu_geo_location": psu_geo_location,
        }
        if request_id:
            request_kwargs["request_id"] = request_id
        if psu_ip_address:
            request_kwargs["psu_ip_address"] = psu_ip_address
        self._update(payment_response=None)
        response = await self._run(
            self.client.create_payment,
            PaymentRequest(**request_kwargs),
        )
        self._update(payment_response=response)
        return response

    async def get_payment_status(
        self,
        payment_id: str,
        service: PaymentService | str = PaymentService.SINGLE,
        product: PaymentProduct | str = PaymentProduct.RON,
    ) -> PaymentStatusResponse:
        status = await self._run(
            self.client.get_payment_status,
            payment_id,
            service,
            product,
        )
        self._update(payment_status=status)
        return status

    async def get_payment_details(
        self,
        payment_id: str,
        service: PaymentService | str = PaymentService.SINGLE,
        product: PaymentProduct | str = PaymentProduct.RON,
    ) -> dict:
        return await self._run(
            self.client.get_payment_details,
            payment_id,
            service,
            product,
        )

    async def confirm_bulk_payment(
        self,
        bulk_payment_id: str,
        product: PaymentProduct | str = PaymentProduct.RON,
    ) -> dict:
        return await self._run(
            self.client.confirm_bulk_payment,
            bulk_payment_id,
            product,
        )

    async def poll(
        self,
        payment_id: str,
        *,
        service: PaymentService | str = PaymentService.SINGLE,
        product: PaymentProduct | str = PaymentProduct.RON,
        interval: float = DEFAULT_INTERVAL,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> StatusPoller:
        """Start polling a payment, mirroring each status into the store.

        Any previous poller is stopped first.
        """
        if self.poller is not None:
            self.poller.stop()
        self.poller = StatusPoller.for_client(
            self.client,
            service,
            product,
            interval=interval,
            max_attempts=max_attempts,
            on_status=lambda status: self._update(payment_status=status),
            on_error=lambda exc: self._update(error=exc),
        )
        await self.poller.start(payment_id)
        return self.poller

    def reset(self) -> None:
        self._update(payment_response=None, payment_status=None, error=None)

    def dispose(self) -> None:
        """Stop polling and release the client session. Idempotent."""
        if self.poller is not None:
            self.poller.stop()
        self.client.dispose()
        self._update(is_authenticated=False)

    async def aclose(self) -> None:
        self.dispose()
        await self.client.__aexit__(None, None, None)
