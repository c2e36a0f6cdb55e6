"""Payment status polling.

:class:`StatusPoller` repeatedly asks for a payment's transaction status
until the bank reports a terminal status, the attempt budget runs out, a
check fails or the caller stops it::

    idle --begin--> polling --finish--> stopped
      \\                  \\--halt-----> stopped
       \\--halt-------------------------> stopped

``stopped --begin--> polling`` restarts with a fresh attempt budget.
"""

import asyncio
import logging
from collections.abc import Awaitable
from collections.abc import Callable
from enum import StrEnum
from enum import unique

from transitions import Machine

from .scheduler import AsyncioScheduler
from .scheduler import Handle
from .scheduler import Scheduler
from .types import PaymentProduct
from .types import PaymentService
from .types import PaymentStatusResponse
from .types import TransactionStatus


logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 3.0
DEFAULT_MAX_ATTEMPTS = 10


@unique
class PollingState(StrEnum):
    IDLE = "idle"
    POLLING = "polling"
    STOPPED = "stopped"


@unique
class StopReason(StrEnum):
    TERMINAL = "terminal"
    EXHAUSTED = "exhausted"
    STOPPED = "stopped"
    ERROR = "error"


StatusCheck = Callable[[str], Awaitable[PaymentStatusResponse]]

TRANSITIONS = [
    {
        "trigger": "begin",
        "source": [PollingState.IDLE.value, PollingState.STOPPED.value],
        "dest": PollingState.POLLING.value,
    },
    {
        "trigger": "finish",
        "source": PollingState.POLLING.value,
        "dest": PollingState.STOPPED.value,
    },
    {
        "trigger": "halt",
        "source": "*",
        "dest": PollingState.STOPPED.value,
    },
]


class StatusPoller:
    """Poll a payment's status on a fixed interval.

    :param check_status: async callable taking a payment id and returning
        a ``{"transactionStatus": ...}`` mapping.
    :param interval: seconds between checks.
    :param max_attempts: checks allowed per run.
    :param on_status: called with every status response.
    :param on_error: called with the exception that stopped polling.
    """

    state: str

    def __init__(
        self,
        check_status: StatusCheck,
        *,
        interval: float = DEFAULT_INTERVAL,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        scheduler: Scheduler | None = None,
        on_status: Callable[[PaymentStatusResponse], None] | None = None,
        on_error: Callable[[Exception], None] | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.check_status = check_status
        self.interval = interval
        self.max_attempts = max_attempts
        self.scheduler: Scheduler = scheduler or AsyncioScheduler()
        self.on_status = on_status
        self.on_error = on_error

        self.payment_id: str | None = None
        self.attempt_count = 0
        self.last_status: str | None = None
        self.last_error: Exception | None = None
        self.stop_reason: StopReason | None = None
        self._pending: Handle | None = None
        self._done: asyncio.Event | None = None
        self._run = 0

        self.machine = Machine(
            model=self,
            states=[state.value for state in PollingState],
            transitions=TRANSITIONS,
            initial=PollingState.IDLE.value,
            auto_transitions=False,
        )

    @classmethod
    def for_client(
        cls,
        client,
        service: PaymentService | str = PaymentService.SINGLE,
        product: PaymentProduct | str = PaymentProduct.RON,
        **kwargs,
    ) -> "StatusPoller":
        """Build a poller issuing checks through a ``BTPayClient``."""

        async def check_status(payment_id: str) -> PaymentStatusResponse:
            return await client.get_payment_status(
                payment_id,
                service,
                product,
            )

        kwargs.setdefault("scheduler", client.scheduler)
        return cls(check_status, **kwargs)

    @property
    def is_active(self) -> bool:
        return self.state == PollingState.POLLING

    @property
    def has_pending_tick(self) -> bool:
        return self._pending is not None

    async def start(self, payment_id: str) -> bool:
        """Start polling and run the first check right away.

        :return: False if a run is already in progress.
        """
        if self.is_active:
            return False
        self.payment_id = payment_id
        self.attempt_count = 0
        self.last_status = None
        self.last_error = None
        self.stop_reason = None
        self._run += 1
        self._done = asyncio.Event()
        self.begin()
        logger.debug("Polling status of payment %s", payment_id)
        await self._tick()
        return True

    def stop(self) -> None:
        """Stop polling from any state. Idempotent."""
        self._run += 1
        self._cancel_pending()
        if self.state != PollingState.STOPPED:
            self.stop_reason = StopReason.STOPPED
            self.halt()
            logger.debug("Polling of payment %s stopped", self.payment_id)
        if self._done is not None:
            self._done.set()

    async def wait(self) -> None:
        """Wait until the current run stops."""
        if self._done is not None:
            await self._done.wait()

    def _cancel_pending(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    def _finish(self, reason: StopReason) -> None:
        self._cancel_pending()
        self.stop_reason = reason
        self.finish()
        if self._done is not None:
            self._done.set()

    async def _tick(self) -> None:
        self._pending = None
        run = self._run
        try:
            response = await self.check_status(self.payment_id)
            if run != self._run:
                return
            self.attempt_count += 1
            self.last_status = response.get("transactionStatus")
            if self.on_status is not None:
                self.on_status(response)
                if run != self._run:
                    return
            terminal = TransactionStatus.is_terminal(self.last_status)
        except Exception as exc:
            if run != self._run:
                return
            self._fail(exc)
            return

        if terminal:
            logger.info(
                "Payment %s reached terminal status %s",
                self.payment_id,
                self.last_status,
            )
            self._finish(StopReason.TERMINAL)
        elif self.attempt_count >= self.max_attempts:
            logger.info(
                "Gave up polling payment %s after %s attempts",
                self.payment_id,
                self.attempt_count,
            )
            self._finish(StopReason.EXHAUSTED)
        else:
            self._pending = self.scheduler.schedule(self.interval, self._tick)

    def _fail(self, exc: Exception) -> None:
        logger.warning(
            "Status check for payment %s failed: %s",
            self.payment_id,
            exc,
        )
        self.last_error = exc
        self._finish(StopReason.ERROR)
        if self.on_error is not None:
            self.on_error(exc)
