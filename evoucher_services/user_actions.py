"""
User-action boundary (``evoucher_services.user_actions``).

Responsibility:
    Runs one user-initiated operation and converts its outcome into exactly
    one user-facing notification.  Services raise typed errors and retry
    internally (voucher-number collisions); nothing below this boundary
    notifies anyone.

Architecture position:
    Services -- imperative shell, the outermost layer the engine ships.

Invariants enforced:
    - One call to ``run_user_action`` produces exactly one notification,
      whatever the service did internally.
    - A partially applied action gets a message distinct from a total
      failure, naming the step to retry.
    - Errors are logged with their structured attributes and cause before
      being reduced to a message.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

from evoucher_kernel.exceptions import (
    ConcurrentModificationError,
    EVoucherError,
    NotFoundError,
    PartialApplicationError,
    PersistenceError,
    ValidationError,
    VoucherValidationError,
)
from evoucher_kernel.logging_config import get_logger

logger = get_logger("services.user_actions")

T = TypeVar("T")


class NotificationLevel(str, Enum):
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Notification:
    action: str
    level: NotificationLevel
    message: str
    error_code: str | None = None


class Notifier(ABC):
    """Delivers notifications to the person who triggered the action."""

    @abstractmethod
    def notify(self, notification: Notification) -> None:
        ...


class CollectingNotifier(Notifier):
    """Keeps notifications in memory.  Used by scripts and tests."""

    def __init__(self) -> None:
        self.notifications: list[Notification] = []

    def notify(self, notification: Notification) -> None:
        self.notifications.append(notification)


@dataclass(frozen=True)
class ActionOutcome(Generic[T]):
    """Result of one user action.  ``error`` is set when it did not fully apply."""

    action: str
    result: T | None = None
    error: EVoucherError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def partial(self) -> bool:
        return isinstance(self.error, PartialApplicationError)


def describe_error(action: str, error: EVoucherError) -> tuple[NotificationLevel, str]:
    """User-facing level and message for a failed action."""
    if isinstance(error, PartialApplicationError):
        record = f" for record {error.record_id}" if error.record_id else ""
        done = ", ".join(error.completed_steps) or "nothing"
        return (
            NotificationLevel.WARNING,
            f"{action} was partially applied: {done} succeeded, "
            f"{error.failed_step} failed{record}. Retry only the {error.failed_step} step.",
        )
    if isinstance(error, VoucherValidationError):
        details = "; ".join(e["message"] for e in error.field_errors)
        return NotificationLevel.ERROR, f"{action} failed: {details}"
    if isinstance(error, ValidationError):
        return NotificationLevel.ERROR, f"{action} failed: {error}"
    if isinstance(error, ConcurrentModificationError):
        return (
            NotificationLevel.ERROR,
            f"{action} failed: the {error.entity_type} was changed by someone else. "
            "Reload and try again.",
        )
    if isinstance(error, NotFoundError):
        return NotificationLevel.ERROR, f"{action} failed: the record no longer exists."
    if isinstance(error, PersistenceError):
        return (
            NotificationLevel.ERROR,
            f"{action} failed: the change could not be saved. Nothing was applied.",
        )
    return NotificationLevel.ERROR, f"{action} failed: {error}"


def run_user_action(
    action: str,
    fn: Callable[[], T],
    notifier: Notifier,
    success_message: str | None = None,
) -> ActionOutcome[T]:
    """
    Run ``fn`` as the user action ``action`` and notify exactly once.

    Engine errors are reported and returned in the outcome.  Anything else
    is reported as an unexpected failure and re-raised.
    """
    try:
        result = fn()
    except EVoucherError as exc:
        level, message = describe_error(action, exc)
        log_extra: dict[str, Any] = {"action": action, "error_code": exc.code}
        if isinstance(exc, PersistenceError):
            logger.error("user_action_failed", extra=log_extra, exc_info=exc)
        else:
            logger.warning("user_action_failed", extra=log_extra)
        notifier.notify(Notification(action, level, message, exc.code))
        return ActionOutcome(action=action, error=exc)
    except Exception:
        logger.exception("user_action_crashed", extra={"action": action})
        notifier.notify(Notification(
            action,
            NotificationLevel.ERROR,
            f"{action} failed unexpectedly. Nothing may have been applied; check before retrying.",
        ))
        raise

    logger.info("user_action_completed", extra={"action": action})
    notifier.notify(Notification(
        action,
        NotificationLevel.SUCCESS,
        success_message or f"{action} completed",
    ))
    return ActionOutcome(action=action, result=result)
