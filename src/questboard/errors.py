"""Domain exception hierarchy.

Services raise these for business-rule violations; the HTTP error handler
maps each family to a status code. Duplicate and cooldown outcomes are not
errors from the caller's point of view: ``process_event`` folds them into an
``awarded=False`` result instead of raising.
"""

from __future__ import annotations

from typing import Any


class QuestboardError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        error_code: str | None = None,
    ) -> None:
        self.message = message
        self.details = details or {}
        self.error_code = error_code or self.__class__.__name__
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Serializable form for structured logs."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "is_retryable": self.is_retryable,
        }


class ValidationError(QuestboardError):
    """Bad input shape or enum value; fixable by the caller."""

    status_code = 400


class DuplicateEventError(QuestboardError):
    """An event with the same dedup key already exists. An idempotent no-op."""

    status_code = 200

    def __init__(self, dedup_key: str) -> None:
        super().__init__("Event already exists (duplicate)", {"dedup_key": dedup_key})
        self.dedup_key = dedup_key


class NotFoundError(QuestboardError):
    status_code = 404


class InvalidReferralCodeError(NotFoundError):
    def __init__(self, code: str) -> None:
        super().__init__("Invalid referral code", {"code": code})


class ConflictError(QuestboardError):
    """State-machine violation."""

    status_code = 409


class InvalidTransitionError(ConflictError):
    def __init__(self, entity: str, current: str, target: str) -> None:
        super().__init__(
            f"Invalid transition: {current} -> {target}",
            {"entity": entity, "current": current, "target": target},
        )


class QuestNotCompletedError(ConflictError):
    def __init__(self, quest_id: int, progress_value: int) -> None:
        super().__init__(
            "Quest not completed yet",
            {"quest_id": quest_id, "progress": progress_value},
            error_code="NotCompleted",
        )
        self.progress_value = progress_value


class QuestAlreadyClaimedError(ConflictError):
    def __init__(self, quest_id: int) -> None:
        super().__init__("Reward already claimed", {"quest_id": quest_id}, error_code="AlreadyClaimed")


class AlreadyReferredError(ConflictError):
    def __init__(self, invitee_user_id: int) -> None:
        super().__init__(
            "User has already been referred",
            {"invitee_user_id": invitee_user_id},
            error_code="AlreadyReferred",
        )


class SelfReferralError(ConflictError):
    def __init__(self) -> None:
        super().__init__("Cannot refer yourself", error_code="SelfReferral")


class TransientStorageError(QuestboardError):
    """Retryable storage failure (timeouts, lost connections)."""

    status_code = 503
    is_retryable = True


class SnapshotTimeoutError(TransientStorageError):
    def __init__(self, snapshot_id: int, timeout: float) -> None:
        super().__init__(
            f"Snapshot generation timed out after {timeout:g}s",
            {"snapshot_id": snapshot_id},
        )


class FatalError(QuestboardError):
    """Unexpected or programmer error."""

    status_code = 500
