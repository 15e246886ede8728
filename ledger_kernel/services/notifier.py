"""
Notifier -- best-effort employee messaging after commit.

Responsibility:
    Defines the ``Notifier`` seam (``notify(phone, message, message_type)``), two
    implementations (log-only and an HTTP SMS gateway client), and the
    ``NotificationDispatcher`` that holds messages for the length of a unit
    of work and sends them only after it commits.

Architecture position:
    Kernel > Services -- outermost edge of the kernel.  Nothing on the
    transactional path depends on a notification succeeding.

Invariants enforced:
    - Messages queued in a transaction that rolls back are discarded.
    - A failed or raising notifier is logged as NotificationFailureError and
      never propagates.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Protocol

import httpx

from ledger_kernel.exceptions import NotificationFailureError
from ledger_kernel.logging_config import get_logger

if TYPE_CHECKING:
    from ledger_config.schema import NotifierConfig

logger = get_logger("services.notifier")


@dataclass(frozen=True)
class NotificationResult:
    ok: bool
    detail: str | None = None


@dataclass(frozen=True)
class NotificationMessage:
    phone: str
    message: str
    message_type: str
    recipient_name: str | None = None


DEFAULT_MESSAGE_TYPE = "ledger_notification"


class Notifier(Protocol):
    """Fire-and-forget delivery channel."""

    def notify(
        self, phone: str, message: str, message_type: str = DEFAULT_MESSAGE_TYPE,
    ) -> NotificationResult:
        ...


class LoggingNotifier:
    """Default notifier: writes the message to the log and reports success."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    def notify(
        self, phone: str, message: str, message_type: str = DEFAULT_MESSAGE_TYPE,
    ) -> NotificationResult:
        self.sent.append((phone, message))
        logger.info(
            "notification_logged",
            extra={"phone": phone, "sms_message": message, "message_type": message_type},
        )
        return NotificationResult(ok=True)


class HttpSmsNotifier:
    """
    Posts messages to an SMS gateway endpoint.

    The gateway receives ``{"phone", "message", "messageType", "triggeredBy"}``
    and any 2xx response counts as delivered.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout_seconds: float = 10.0,
        sender_name: str = "ledger",
        api_key: str | None = None,
        client: httpx.Client | None = None,
    ):
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._url = url
        self._sender_name = sender_name
        self._client = client or httpx.Client(headers=headers, timeout=timeout_seconds)

    def notify(
        self,
        phone: str,
        message: str,
        message_type: str = DEFAULT_MESSAGE_TYPE,
    ) -> NotificationResult:
        try:
            response = self._client.post(
                self._url,
                json={
                    "phone": phone,
                    "message": message,
                    "messageType": message_type,
                    "triggeredBy": self._sender_name,
                },
            )
        except httpx.HTTPError as exc:
            return NotificationResult(ok=False, detail=f"{type(exc).__name__}: {exc}")

        if response.is_success:
            return NotificationResult(ok=True)
        return NotificationResult(
            ok=False,
            detail=f"gateway returned {response.status_code}",
        )

    def close(self) -> None:
        self._client.close()


def build_notifier(config: NotifierConfig) -> Notifier:
    """Notifier for a configured ``kind``; the API key is read from the environment."""
    if config.kind == "http":
        api_key = os.environ.get(config.api_key_env) if config.api_key_env else None
        return HttpSmsNotifier(
            config.url,
            timeout_seconds=config.timeout_seconds,
            sender_name=config.sender_name,
            api_key=api_key,
        )
    return LoggingNotifier()


class NotificationDispatcher:
    """
    Per-unit-of-work outbox.

    Services ``queue()`` messages while they work; the orchestrator calls
    ``flush()`` after commit or ``discard()`` after rollback.
    """

    def __init__(self, notifier: Notifier | None = None):
        self._notifier = notifier or LoggingNotifier()
        self._pending: list[NotificationMessage] = []

    @property
    def pending(self) -> tuple[NotificationMessage, ...]:
        return tuple(self._pending)

    def queue(
        self,
        phone: str | None,
        message: str,
        message_type: str,
        recipient_name: str | None = None,
    ) -> None:
        if not phone:
            logger.info(
                "notification_skipped_no_phone",
                extra={"message_type": message_type},
            )
            return
        self._pending.append(NotificationMessage(phone, message, message_type, recipient_name))

    def discard(self, since: int = 0) -> int:
        """Drop messages queued after position ``since`` (all by default)."""
        dropped = max(len(self._pending) - since, 0)
        del self._pending[since:]
        if dropped:
            logger.debug("notifications_discarded", extra={"count": dropped})
        return dropped

    def flush(self) -> list[NotificationResult]:
        """Send every queued message; failures are logged and returned."""
        messages, self._pending = self._pending, []
        results = []
        for msg in messages:
            try:
                result = self._notifier.notify(msg.phone, msg.message, msg.message_type)
            except Exception as exc:
                # Delivery is outside the ledger's guarantees
                result = NotificationResult(ok=False, detail=f"{type(exc).__name__}: {exc}")

            if not result.ok:
                failure = NotificationFailureError(msg.phone, result.detail or "unknown")
                logger.warning(
                    "notification_failed",
                    extra={
                        "message_type": msg.message_type,
                        "error_code": failure.code,
                        "reason": failure.reason,
                        "phone": msg.phone,
                    },
                )
            else:
                logger.info(
                    "notification_sent",
                    extra={"message_type": msg.message_type, "phone": msg.phone},
                )
            results.append(result)
        return results


# ---------------------------------------------------------------------------
# Message templates
# ---------------------------------------------------------------------------


def format_amount(amount: Decimal, currency: str = "UGX") -> str:
    """``UGX 500,000`` for whole amounts, ``UGX 1,234.50`` otherwise."""
    amount = Decimal(amount)
    pattern = ",.0f" if amount == amount.to_integral_value() else ",.2f"
    return f"{currency} {format(amount, pattern)}"


def advance_disbursed_message(name: str, amount: Decimal, currency: str) -> str:
    return (
        f"Dear {name}, your salary advance of {format_amount(amount, currency)} "
        f"has been APPROVED and DISBURSED. The minimum payment will be deducted "
        f"from your future salary requests."
    )


def withdrawal_approved_message(name: str, amount: Decimal, currency: str, ref: str) -> str:
    return (
        f"Dear {name}, your withdrawal request {ref} of "
        f"{format_amount(amount, currency)} has been APPROVED. Payment will be "
        f"processed shortly."
    )


def withdrawal_rejected_message(name: str, amount: Decimal, currency: str, ref: str) -> str:
    return (
        f"Dear {name}, your withdrawal request {ref} of "
        f"{format_amount(amount, currency)} has been rejected. The amount is "
        f"available to request again."
    )


def withdrawal_paid_message(name: str, amount: Decimal, currency: str, ref: str) -> str:
    return (
        f"Dear {name}, {format_amount(amount, currency)} for withdrawal {ref} "
        f"has been PAID to you."
    )


def advance_paid_off_message(name: str) -> str:
    return f"Dear {name}, your salary advance has been fully repaid. Thank you."
