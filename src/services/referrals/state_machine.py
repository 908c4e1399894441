"""
Referral Status State Machines.

Provides:
- Lifecycle transitions for a referral document
- Transitions for the fast and full extraction side-channels
- Precondition checks that raise StateError without touching the document

The three status fields are independent; fast and full extraction can run
concurrently once text is available.

Lifecycle:
    UPLOADED -> TEXT_EXTRACTED | FAILED
    TEXT_EXTRACTED -> EXTRACTED | FAILED
    EXTRACTED -> APPLIED | FAILED
    TEXT_EXTRACTED | EXTRACTED | FAILED -> TEXT_EXTRACTED   (re-extraction reset)

Extraction side-channel:
    PENDING | FAILED -> PROCESSING   (optimistic lock)
    PROCESSING -> COMPLETE | FAILED
    COMPLETE | FAILED -> PENDING     (explicit retry)
"""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

from src.core.enums import ExtractionStatus, ReferralDocumentStatus
from src.services.referrals.errors import StateError
from src.utils.logging import get_logger

logger = get_logger(__name__)

S = TypeVar("S", bound=Enum)
E = TypeVar("E", bound=Enum)


class LifecycleEvent(str, Enum):
    """Events that move a referral document through its lifecycle."""

    EXTRACT_TEXT = "extract_text"
    EXTRACT_STRUCTURED = "extract_structured"
    APPLY = "apply"
    PHASE_FAILED = "phase_failed"
    RESET_FOR_REEXTRACTION = "reset_for_reextraction"


class ExtractionEvent(str, Enum):
    """Events on the fast or full extraction side-channel."""

    START = "start"
    COMPLETE = "complete"
    FAIL = "fail"
    RESET = "reset"


@dataclass(frozen=True)
class Transition(Generic[S, E]):
    """Represents a valid state transition."""

    from_status: S
    to_status: S
    event: E


# =============================================================================
# Valid Transitions Definition
# =============================================================================

_DS = ReferralDocumentStatus
_XS = ExtractionStatus

LIFECYCLE_TRANSITIONS: list[Transition] = [
    Transition(_DS.UPLOADED, _DS.TEXT_EXTRACTED, LifecycleEvent.EXTRACT_TEXT),
    Transition(_DS.TEXT_EXTRACTED, _DS.EXTRACTED, LifecycleEvent.EXTRACT_STRUCTURED),
    Transition(_DS.EXTRACTED, _DS.APPLIED, LifecycleEvent.APPLY),
    # Any non-terminal state fails when its phase errors
    Transition(_DS.UPLOADED, _DS.FAILED, LifecycleEvent.PHASE_FAILED),
    Transition(_DS.TEXT_EXTRACTED, _DS.FAILED, LifecycleEvent.PHASE_FAILED),
    Transition(_DS.EXTRACTED, _DS.FAILED, LifecycleEvent.PHASE_FAILED),
    # Re-extraction returns to the last state that has text available
    Transition(_DS.TEXT_EXTRACTED, _DS.TEXT_EXTRACTED, LifecycleEvent.RESET_FOR_REEXTRACTION),
    Transition(_DS.EXTRACTED, _DS.TEXT_EXTRACTED, LifecycleEvent.RESET_FOR_REEXTRACTION),
    Transition(_DS.FAILED, _DS.TEXT_EXTRACTED, LifecycleEvent.RESET_FOR_REEXTRACTION),
]

EXTRACTION_TRANSITIONS: list[Transition] = [
    Transition(_XS.PENDING, _XS.PROCESSING, ExtractionEvent.START),
    Transition(_XS.FAILED, _XS.PROCESSING, ExtractionEvent.START),
    Transition(_XS.PROCESSING, _XS.COMPLETE, ExtractionEvent.COMPLETE),
    Transition(_XS.PROCESSING, _XS.FAILED, ExtractionEvent.FAIL),
    Transition(_XS.COMPLETE, _XS.PENDING, ExtractionEvent.RESET),
    Transition(_XS.FAILED, _XS.PENDING, ExtractionEvent.RESET),
]


class StatusMachine(Generic[S, E]):
    """
    Table-driven state machine over one status field.

    Validation is pure; callers persist the new status themselves, usually
    through a conditional update keyed on ``sources(event)``.
    """

    def __init__(self, name: str, transitions: list[Transition]):
        self.name = name
        self._transitions: dict[tuple[S, E], Transition] = {}
        self._from_status_map: dict[S, list[Transition]] = {}

        for transition in transitions:
            self._transitions[(transition.from_status, transition.event)] = transition
            self._from_status_map.setdefault(transition.from_status, []).append(transition)

    def get_valid_transitions(self, status: S) -> list[Transition]:
        """Get all valid transitions from a given status."""
        return self._from_status_map.get(status, [])

    def get_next_statuses(self, status: S) -> list[S]:
        return [t.to_status for t in self.get_valid_transitions(status)]

    def can_transition(self, from_status: S, to_status: S) -> bool:
        """Check if transition from one status to another is valid."""
        return to_status in self.get_next_statuses(from_status)

    def get_transition(self, from_status: S, event: E) -> Optional[Transition]:
        return self._transitions.get((from_status, event))

    def sources(self, event: E) -> frozenset[S]:
        """Statuses from which ``event`` is legal."""
        return frozenset(
            from_status for (from_status, ev) in self._transitions if ev == event
        )

    def require(self, current: S, event: E, message: Optional[str] = None) -> S:
        """
        Return the target status for ``event`` or raise StateError.

        Raises:
            StateError: ``event`` is not legal from ``current``.
        """
        transition = self.get_transition(current, event)
        if transition is None:
            expected = ", ".join(sorted(s.value for s in self.sources(event)))
            logger.bind(action=event.value).debug(
                f"{self.name}: rejected {event.value} from {current.value}"
            )
            raise StateError(
                message or f"Invalid {self.name} transition: {current.value} + {event.value}",
                current_status=current.value,
                expected_status=expected,
            )
        return transition.to_status


# =============================================================================
# Status Helpers
# =============================================================================


def can_delete(status: ReferralDocumentStatus) -> bool:
    return status != ReferralDocumentStatus.APPLIED


def has_extracted_data_status(status: ReferralDocumentStatus) -> bool:
    """Statuses at which the full extraction result is expected to be stored."""
    return status in (ReferralDocumentStatus.EXTRACTED, ReferralDocumentStatus.APPLIED)


# =============================================================================
# Singleton Instances
# =============================================================================


_lifecycle_machine: Optional[StatusMachine] = None
_extraction_machine: Optional[StatusMachine] = None


def get_lifecycle_machine() -> StatusMachine:
    """Get singleton lifecycle state machine."""
    global _lifecycle_machine
    if _lifecycle_machine is None:
        _lifecycle_machine = StatusMachine("lifecycle", LIFECYCLE_TRANSITIONS)
    return _lifecycle_machine


def get_extraction_machine() -> StatusMachine:
    """Get singleton machine shared by the fast and full side-channels."""
    global _extraction_machine
    if _extraction_machine is None:
        _extraction_machine = StatusMachine("extraction", EXTRACTION_TRANSITIONS)
    return _extraction_machine
