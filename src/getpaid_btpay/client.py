"""Async HTTP client for the BT PSD2 payment-initiation API."""

import logging
import uuid
from typing import Any

import httpx

from .exceptions import ApiError
from .exceptions import AuthenticationError
from .exceptions import BTPayError
from .exceptions import PaymentInitiationError
from .exceptions import classify_response
from .exceptions import classify_transport_error
from .exceptions import decode_body
from .scheduler import AsyncioScheduler
from .scheduler import Handle
from .scheduler import Scheduler
from .types import DEFAULT_PSU_IP_ADDRESS
from .types import DEFAULT_TOKEN_LIFETIME
from .types import ClientConfig
from .types import Environment
from .types import PaymentInitiationResponse
from .types import PaymentProduct
from .types import PaymentRequest
from .types import PaymentService
from .types import PaymentStatusResponse
from .validation import validate_payment


MIN_REFRESH_DELAY = 0.1


class BTPayClient:
    """Async client for the BT PSD2 PISP API.

    Obtains a bearer token with a client-credentials grant, attaches it to
    every operation and keeps it fresh with a scheduled refresh. Can be
    used as an async context manager for connection reuse::

        async with BTPayClient(api_key="...") as client:
            await client.authenticate()
            await client.create_payment(request)

    Leaving the context disposes the session (see :meth:`dispose`).
    """

    last_response: httpx.Response | None = None

    def __init__(
        self,
        *,
        api_key: str,
        environment: Environment | str = Environment.SANDBOX,
        token_refresh_interval: float = 60,
        auto_refresh_token: bool = True,
        refresh_retry_delay: float | None = None,
        scheduler: Scheduler | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = ClientConfig(
            api_key=api_key,
            environment=environment,
            token_refresh_interval=token_refresh_interval,
            auto_refresh_token=auto_refresh_token,
            refresh_retry_delay=refresh_retry_delay,
        )
        self.base_url = self.config.base_url
        self.scheduler: Scheduler = scheduler or AsyncioScheduler()
        self.logger = logger or logging.getLogger(__name__)
        self._access_token: str | None = None
        self._token_expires_at: float | None = None
        self._refresh_handle: Handle | None = None
        # bumped by dispose() so in-flight grants cannot revive the session
        self._epoch = 0
        self._client: httpx.AsyncClient | None = None
        self._owns_client: bool = False

    async def __aenter__(self) -> "BTPayClient":
        self._client = httpx.AsyncClient(
            headers={"Content-Type": "application/json"},
        )
        self._owns_client = True
        return self

    async def __aexit__(self, *exc) -> None:
        self.dispose()
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
            self._owns_client = False

    @property
    def access_token(self) -> str | None:
        return self._access_token

    @property
    def token_expires_at(self) -> float | None:
        return self._token_expires_at

    @property
    def is_open(self) -> bool:
        """True while a pooled connection context is entered."""
        return self._client is not None

    @property
    def has_pending_refresh(self) -> bool:
        return self._refresh_handle is not None

    @property
    def is_authenticated(self) -> bool:
        return self._access_token is not None and not self._token_expired()

    def _token_expired(self) -> bool:
        if self._token_expires_at is None:
            return False
        return self.scheduler.now() >= self._token_expires_at

    async def _send(
        self,
        method: str,
        url: str,
        *,
        headers: dict | None = None,
        json: Any = None,
    ) -> httpx.Response:
        """Execute an HTTP request, classifying transport failures."""
        try:
            if self._client is not None:
                return await self._client.request(
                    method,
                    url,
                    headers=headers,
                    json=json,
                )
            async with httpx.AsyncClient(
                headers={"Content-Type": "application/json"},
            ) as client:
                return await client.request(
                    method,
                    url,
                    headers=headers,
                    json=json,
                )
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise classify_transport_error(exc) from exc

    async def _request(
        self,
        method: str,
        path: str,
        *,
        headers: dict | None = None,
        json: Any = None,
    ) -> httpx.Response:
        """Execute an authenticated API request.

        Re-authenticates first when the held token has expired, then
        attaches the bearer token if one is held.

        :raises BTPayError: for any failed exchange.
        """
        if self._access_token is not None and self._token_expired():
            self.logger.info("Access token expired, re-authenticating")
            await self.authenticate()

        request_headers = dict(headers or {})
        if self._access_token is not None:
            request_headers["Authorization"] = f"Bearer {self._access_token}"

        self.last_response = await self._send(
            method,
            f"{self.base_url}{path}",
            headers=request_headers,
            json=json,
        )
        error = classify_response(self.last_response)
        if error is not None:
            raise error
        return self.last_response

    async def authenticate(self) -> bool:
        """Obtain an access token (POST /oauth2/token).

        :return: True if a token was issued, False if the response
            carried none.
        :raises AuthenticationError: if the grant request failed.
        """
        url = f"{self.base_url}/oauth2/token"
        data = {
            "grant_type": "client_credentials",
            "client_id": self.config.api_key,
        }
        epoch = self._epoch
        try:
            self.last_response = await self._send("POST", url, json=data)
        except BTPayError as exc:
            self.logger.error("Authentication failed: %s", exc.message)
            raise AuthenticationError(
                "Authentication failed",
                status=exc.status or 401,
                payload=exc.payload,
            ) from exc

        if not self.last_response.is_success:
            self.logger.error(
                "Authentication failed with status %s",
                self.last_response.status_code,
            )
            raise AuthenticationError(
                "Authentication failed",
                status=self.last_response.status_code or 401,
                payload=decode_body(self.last_response),
            )

        body = decode_body(self.last_response)
        token = body.get("access_token") if isinstance(body, dict) else None
        if not token:
            self.logger.warning("Token response carried no access_token")
            return False
        if epoch != self._epoch:
            self.logger.debug("Client disposed during authentication")
            return False

        lifetime = self._parse_lifetime(body.get("expires_in"))
        self._access_token = token
        self._token_expires_at = self.scheduler.now() + lifetime
        self.logger.info("Authenticated, token valid for %s seconds", lifetime)
        if self.config.auto_refresh_token:
            self._schedule_refresh(
                max(
                    MIN_REFRESH_DELAY,
                    lifetime - self.config.token_refresh_interval,
                )
            )
        return True

    def _parse_lifetime(self, value: Any) -> float:
        if not value:
            return DEFAULT_TOKEN_LIFETIME
        try:
            lifetime = float(value)
        except (TypeError, ValueError):
            lifetime = None
        if lifetime is None or not 0 < lifetime < float("inf"):
            self.logger.warning(
                "Ignoring invalid expires_in %r, assuming %s seconds",
                value,
                DEFAULT_TOKEN_LIFETIME,
            )
            return DEFAULT_TOKEN_LIFETIME
        return lifetime

    def _schedule_refresh(self, delay: float) -> None:
        self._cancel_refresh()
        self._refresh_handle = self.scheduler.schedule(
            delay,
            self._refresh_token,
        )
        self.logger.debug("Token refresh scheduled in %.1f seconds", delay)

    def _cancel_refresh(self) -> None:
        if self._refresh_handle is not None:
            self._refresh_handle.cancel()
            self._refresh_handle = None

    async def _refresh_token(self) -> None:
        """Timer callback; failures are logged, never raised."""
        self._refresh_handle = None
        epoch = self._epoch
        try:
            await self.authenticate()
        except AuthenticationError as exc:
            self.logger.error(
                "Scheduled token refresh failed (status %s): %s",
                exc.status,
                exc.message,
            )
            retry = self.config.refresh_retry_delay
            if retry is not None and epoch == self._epoch:
                self._schedule_refresh(retry)

    def dispose(self) -> None:
        """Cancel the pending refresh and drop the token. Idempotent."""
        self._epoch += 1
        self._cancel_refresh()
        self._access_token = None
        self._token_expires_at = None

    async def create_payment(
        self,
        request: PaymentRequest,
    ) -> PaymentInitiationResponse:
        """Initiate a payment.

        POST /v2/{paymentService}/{paymentProduct}

        :param request: Service, product, body and PSU headers.
        :return: Initiation response, as returned by the bank.
        :raises ValidationError: if the body fails local checks.
        """
        validate_payment(request.payment, request.service, request.product)
        try:
            response = await self._request(
                "POST",
                request.path,
                headers=request.headers(),
                json=request.payment,
            )
            return response.json()
        except BTPayError:
            raise
        except Exception as exc:
            raise PaymentInitiationError(
                "Failed to create payment",
                status=0,
                payload=str(exc),
            ) from exc

    async def get_payment_status(
        self,
        payment_id: str,
        service: PaymentService | str = PaymentService.SINGLE,
        product: PaymentProduct | str = PaymentProduct.RON,
    ) -> PaymentStatusResponse:
        """Get the transaction status of a payment.

        GET /v2/{paymentService}/{paymentProduct}/{paymentId}/status
        """
        path = f"/v2/{service}/{product}/{payment_id}/status"
        try:
            response = await self._request(
                "GET",
                path,
                headers={"X-Request-ID": str(uuid.uuid4())},
            )
            return response.json()
        except BTPayError:
            raise
        except Exception as exc:
            raise ApiError(
                "Failed to get payment status",
                status=0,
                payload=str(exc),
            ) from exc

    async def get_payment_details(
        self,
        payment_id: str,
        service: PaymentService | str = PaymentService.SINGLE,
        product: PaymentProduct | str = PaymentProduct.RON,
    ) -> dict:
        """Get the full payment resource.

        GET /v2/{paymentService}/{paymentProduct}/{paymentId}
        """
        path = f"/v2/{service}/{product}/{payment_id}"
        try:
            response = await self._request(
                "GET",
                path,
                headers={"X-Request-ID": str(uuid.uuid4())},
            )
            return response.json()
        except BTPayError:
            raise
        except Exception as exc:
            raise ApiError(
                "Failed to get payment details",
                status=0,
                payload=str(exc),
            ) from exc

    async def confirm_bulk_payment(
        self,
        bulk_payment_id: str,
        product: PaymentProduct | str = PaymentProduct.RON,
    ) -> dict:
        """Confirm a bulk payment.

        POST /v2/bulk-payments/{paymentProduct}/confirmation
        """
        path = f"/v2/{PaymentService.BULK}/{product}/confirmation"
        try:
            response = await self._request(
                "POST",
                path,
                headers={
                    "X-Request-ID": str(uuid.uuid4()),
                    "PSU-IP-Address": DEFAULT_PSU_IP_ADDRESS,
                },
                json={"paymentBulkId": bulk_payment_id},
            )
            return response.json()
        except BTPayError:
            raise
        except Exception as exc:
            raise ApiError(
                "Failed to confirm bulk payment",
                status=0,
                payload=str(exc),
            ) from exc

    @staticmethod
    def get_sca_redirect_url(
        response: PaymentInitiationResponse,
    ) -> str | None:
        """Pick the SCA link the PSU should be sent to, if any."""
        links = response.get("_links") or {}
        for name in ("scaRedirect", "scaOAuth"):
            link = links.get(name)
            if link and link.get("href"):
                return link["href"]
        return None
