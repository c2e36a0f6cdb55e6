"""BT PSD2 payment processor."""

import contextlib
import logging
from decimal import Decimal
from typing import ClassVar

from getpaid_core.exceptions import InvalidCallbackError
from getpaid_core.processor import BaseProcessor
from getpaid_core.types import ChargeResponse
from getpaid_core.types import PaymentStatusResponse
from getpaid_core.types import TransactionResult
from transitions.core import MachineError

from .client import BTPayClient
from .exceptions import AuthenticationError
from .types import DEFAULT_PSU_IP_ADDRESS
from .types import PRODUCTION_URL
from .types import SANDBOX_URL
from .types import Currency
from .types import Environment
from .types import PaymentProduct
from .types import PaymentRequest
from .types import PaymentService
from .types import TransactionStatus


logger = logging.getLogger(__name__)

STATUS_MAP = {
    TransactionStatus.ACSC.value: "confirm_payment",
    TransactionStatus.RJCT.value: "fail",
    TransactionStatus.CANC.value: "fail",
}


class BTPayProcessor(BaseProcessor):
    """Banca Transilvania PSD2 payment-initiation processor.

    Flow: create payment -> redirect PSU to SCA -> PSU returns ->
    status check. There is no pre-authorization and PSD2 payment
    initiation has no refunds, so ``charge()``, ``release_lock()`` and
    ``start_refund()`` raise ``NotImplementedError``.
    """

    slug: ClassVar[str] = "btpay"
    display_name: ClassVar[str] = "BT Pay"
    accepted_currencies: ClassVar[list[str]] = [c.value for c in Currency]
    sandbox_url: ClassVar[str] = SANDBOX_URL
    production_url: ClassVar[str] = PRODUCTION_URL

    def _get_client(self) -> BTPayClient:
        """Create a BTPayClient from processor config.

        Processor calls are short-lived, so no refresh timer is kept.
        """
        sandbox = self.get_setting("sandbox", True)
        return BTPayClient(
            api_key=self.get_setting("api_key"),
            environment=(
                Environment.SANDBOX if sandbox else Environment.PRODUCTION
            ),
            auto_refresh_token=False,
            logger=logger,
        )

    async def _authenticate(self, client: BTPayClient) -> None:
        if not await client.authenticate():
            raise AuthenticationError(
                "BT PSD2 API issued no access token",
                status=401,
            )

    def _resolve_url(self, url_template: str) -> str:
        """Replace {payment_id} placeholder."""
        return url_template.format(payment_id=self.payment.id)

    def _get_product(self) -> PaymentProduct:
        if self.payment.currency == Currency.RON:
            return PaymentProduct.RON
        return PaymentProduct.OTHER_CURRENCY

    def _build_payment_body(self) -> dict:
        """Build the credit transfer from the payment object."""
        amount = Decimal(self.payment.amount_required).quantize(
            Decimal("0.01")
        )
        body: dict = {
            "instructedAmount": {
                "currency": self.payment.currency,
                "amount": str(amount),
            },
            "creditorAccount": {"iban": self.get_setting("creditor_iban", "")},
            "creditorName": self.get_setting("creditor_name", ""),
            "endToEndIdentification": str(self.payment.id),
        }
        if self.payment.description:
            body["remittanceInformationUnstructured"] = (
                self.payment.description
            )
        if self._get_product() is PaymentProduct.OTHER_CURRENCY:
            body["creditorAgent"] = self.get_setting("creditor_agent", "")
            body["creditorAgentName"] = self.get_setting(
                "creditor_agent_name", ""
            )
            body["creditorAddress"] = {
                "country": self.get_setting("creditor_country", ""),
            }
        return body

    def _build_request(self, **kwargs) -> PaymentRequest:
        return PaymentRequest(
            service=self.get_setting("payment_service", PaymentService.SINGLE),
            product=self._get_product(),
            payment=self._build_payment_body(),
            psu_ip_address=(
                kwargs.get("customer_ip")
                or self.get_setting("psu_ip_address", DEFAULT_PSU_IP_ADDRESS)
            ),
            psu_geo_location=kwargs.get("psu_geo_location"),
        )

    async def prepare_transaction(self, **kwargs) -> TransactionResult:
        """Create the payment and return the SCA redirect."""
        request = self._build_request(**kwargs)
        async with self._get_client() as client:
            await self._authenticate(client)
            response = await client.create_payment(request)

        self.payment.external_id = response.get("paymentId", "")
        redirect_url = BTPayClient.get_sca_redirect_url(response)
        if redirect_url is None:
            redirect_url = self._resolve_url(
                self.get_setting("url_return", ""),
            )
        return TransactionResult(
            redirect_url=redirect_url,
            form_data=None,
            method="GET",
            headers={},
        )

    async def _fetch_transaction_status(self) -> str | None:
        service = self.get_setting("payment_service", PaymentService.SINGLE)
        async with self._get_client() as client:
            await self._authenticate(client)
            response = await client.get_payment_status(
                self.payment.external_id,
                service,
                self._get_product(),
            )
        return response.get("transactionStatus")

    async def verify_callback(
        self, data: dict, headers: dict, **kwargs
    ) -> None:
        """Check that the PSU came back for this payment."""
        payment_id = data.get("paymentId")
        if not payment_id:
            raise InvalidCallbackError("Missing paymentId in callback")
        if str(payment_id) != str(self.payment.external_id):
            logger.error(
                "BT PSD2 callback for payment %s carries paymentId '%s', "
                "expected '%s'",
                self.payment.id,
                payment_id,
                self.payment.external_id,
            )
            raise InvalidCallbackError(
                f"PAYMENT ID MISMATCH: got '{payment_id}', "
                f"expected '{self.payment.external_id}'"
            )

    async def handle_callback(
        self, data: dict, headers: dict, **kwargs
    ) -> None:
        """Update the payment after the PSU returns from SCA.

        The return itself proves nothing, so the current status is
        fetched from the API and the FSM is moved accordingly.
        """
        status = await self._fetch_transaction_status()
        trigger = STATUS_MAP.get(status)
        if trigger is None:
            logger.debug(
                "Payment %s still in status %s",
                self.payment.id,
                status,
            )
            return

        if not self.payment.may_trigger(trigger):
            logger.debug(
                "Cannot %s payment %s (status: %s)",
                trigger,
                self.payment.id,
                self.payment.status,
            )
            return

        getattr(self.payment, trigger)()
        if trigger == "confirm_payment":
            with contextlib.suppress(MachineError):
                self.payment.mark_as_paid()

    async def fetch_payment_status(self, **kwargs) -> PaymentStatusResponse:
        """PULL flow: fetch transaction status from the API."""
        status = await self._fetch_transaction_status()
        return PaymentStatusResponse(status=STATUS_MAP.get(status))

    async def charge(
        self, amount: Decimal | None = None, **kwargs
    ) -> ChargeResponse:
        """Not supported (no pre-auth flow)."""
        raise NotImplementedError(
            "BT PSD2 does not support pre-authorization/charge flow"
        )

    async def release_lock(self, **kwargs) -> Decimal:
        """Not supported (no pre-auth flow)."""
        raise NotImplementedError(
            "BT PSD2 does not support pre-authorization/release flow"
        )

    async def start_refund(
        self, amount: Decimal | None = None, **kwargs
    ) -> Decimal:
        """Not supported by PSD2 payment initiation."""
        raise NotImplementedError("BT PSD2 payment initiation has no refunds")
