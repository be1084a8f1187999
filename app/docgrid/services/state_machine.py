"""
Document processing state machine.

pending -> processing -> {completed | failed | cancelled}. Terminal states
may re-enter processing for a new attempt, and a document stuck in
processing may be restarted. Any other transition is rejected.
"""

from datetime import datetime

from ..models import ProcessingError, ProcessingState, ProcessingStatus

TERMINAL_STATES = frozenset(
    {ProcessingStatus.COMPLETED, ProcessingStatus.FAILED, ProcessingStatus.CANCELLED}
)

ALLOWED_TRANSITIONS: dict[ProcessingStatus, frozenset[ProcessingStatus]] = {
    ProcessingStatus.PENDING: frozenset({ProcessingStatus.PROCESSING}),
    ProcessingStatus.PROCESSING: frozenset(
        {ProcessingStatus.PROCESSING} | TERMINAL_STATES
    ),
    ProcessingStatus.COMPLETED: frozenset({ProcessingStatus.PROCESSING}),
    ProcessingStatus.FAILED: frozenset({ProcessingStatus.PROCESSING}),
    ProcessingStatus.CANCELLED: frozenset({ProcessingStatus.PROCESSING}),
}

# A new attempt after one of these counts as a retry
_NON_COMPLETED = frozenset(
    {ProcessingStatus.PROCESSING, ProcessingStatus.FAILED, ProcessingStatus.CANCELLED}
)


class InvalidTransitionError(Exception):
    """Raised on a transition the state machine does not allow."""

    def __init__(self, current: ProcessingStatus, target: ProcessingStatus):
        self.current = current
        self.target = target
        super().__init__(
            f"Invalid processing transition: {current.value} -> {target.value}"
        )


def clamp_progress(progress: int | float | None) -> int:
    if progress is None:
        return 0
    return max(0, min(100, int(progress)))


class ProcessingStateMachine:
    """Applies transitions to a ProcessingState, returning the new state."""

    def can_transition(
        self, current: ProcessingStatus | str, target: ProcessingStatus | str
    ) -> bool:
        return ProcessingStatus(target) in ALLOWED_TRANSITIONS[ProcessingStatus(current)]

    def transition(
        self,
        state: ProcessingState,
        target: ProcessingStatus | str,
        progress: int | None = None,
        error: ProcessingError | None = None,
        now: datetime | None = None,
    ) -> ProcessingState:
        """
        Move ``state`` to ``target``.

        Args:
            state: Current processing state (left untouched).
            target: Status to enter.
            progress: Caller-reported progress; clamped to [0, 100].
            error: Structured error, stored when entering failed.
            now: Timestamp to stamp; defaults to utcnow.

        Returns:
            The new ProcessingState.

        Raises:
            InvalidTransitionError: If the transition is not allowed.
        """
        current = ProcessingStatus(state.status)
        target = ProcessingStatus(target)
        if not self.can_transition(current, target):
            raise InvalidTransitionError(current, target)

        now = now or datetime.utcnow()
        updated = state.model_copy()
        updated.status = target

        if target == ProcessingStatus.PROCESSING:
            if updated.started_at is None:
                updated.started_at = now
            if current in _NON_COMPLETED:
                updated.retry_count += 1
            updated.completed_at = None
            updated.error = None
            updated.progress = clamp_progress(progress)
        elif target == ProcessingStatus.COMPLETED:
            updated.completed_at = now
            updated.progress = 100
            updated.error = None
        elif target == ProcessingStatus.FAILED:
            updated.completed_at = now
            if progress is not None:
                updated.progress = clamp_progress(progress)
            updated.error = error or ProcessingError(message="Processing failed", code="UNKNOWN")
        elif target == ProcessingStatus.CANCELLED:
            updated.completed_at = now
            if progress is not None:
                updated.progress = clamp_progress(progress)

        return updated
