"""
Trip Stage State Machine (pure).

Forward-only, one step at a time:
- same stage again is an idempotent no-op
- going back is a regression and is rejected
- jumping more than one stage ahead is a skip and is rejected

Has no I/O so that callers can run it as a fast pre-check; the
authoritative check is the one TripProgressService runs before persisting.
"""

from dataclasses import dataclass
from typing import Optional

from freight_tracking.app.models.trip_enums import TripStage


STAGE_ORDER = [stage.value for stage in TripStage]

STAGE_LABELS = {
    TripStage.NEW.value: "New",
    TripStage.ACCEPTED.value: "Accepted",
    TripStage.LOADING.value: "Heading to pickup",
    TripStage.LOADED.value: "Loaded",
    TripStage.IN_TRANSIT.value: "In transit",
    TripStage.DELIVERED_PENDING_CONFIRMATION.value: "Delivery reported",
    TripStage.DELIVERED.value: "Delivered",
    TripStage.COMPLETED.value: "Completed",
}

# Stage -> TripProgress column holding the first time it was reached
STAGE_TIMESTAMP_FIELDS = {
    TripStage.ACCEPTED.value: "accepted_at",
    TripStage.LOADING.value: "loading_at",
    TripStage.LOADED.value: "loaded_at",
    TripStage.IN_TRANSIT.value: "in_transit_at",
    TripStage.DELIVERED_PENDING_CONFIRMATION.value: "delivered_pending_confirmation_at",
    TripStage.DELIVERED.value: "delivered_at",
    TripStage.COMPLETED.value: "completed_at",
}


class TransitionReason:
    ADVANCE = "advance"
    IDEMPOTENT = "idempotent"
    UNKNOWN_CURRENT = "unknown_current"
    REGRESSION = "regression"
    SKIP = "skip"
    UNRECOGNIZED = "unrecognized"


@dataclass(frozen=True)
class TransitionCheck:
    """Outcome of validating one requested transition."""
    allowed: bool
    reason: str
    current_status: str
    requested_status: str
    expected_status: Optional[str] = None
    message: Optional[str] = None

    @property
    def idempotent(self) -> bool:
        return self.reason == TransitionReason.IDEMPOTENT


def normalize_status(status: Optional[str]) -> str:
    return str(status or "").strip().upper()


def status_label(status: str) -> str:
    normalized = normalize_status(status)
    return STAGE_LABELS.get(normalized, normalized or status)


def stage_index(status: str) -> int:
    """Rank of a stage in STAGE_ORDER, -1 when unrecognized."""
    normalized = normalize_status(status)
    try:
        return STAGE_ORDER.index(normalized)
    except ValueError:
        return -1


def next_status(current_status: str) -> Optional[str]:
    index = stage_index(current_status)
    if index == -1 or index >= len(STAGE_ORDER) - 1:
        return None
    return STAGE_ORDER[index + 1]


def can_advance(current_status: str) -> bool:
    return next_status(current_status) is not None


def validate_transition(current_status: str, requested_status: str) -> TransitionCheck:
    """
    Validate a requested stage transition.

    Returns a TransitionCheck; rejection messages name stage labels,
    never raw codes.
    """
    current = normalize_status(current_status)
    requested = normalize_status(requested_status)

    current_index = stage_index(current)
    requested_index = stage_index(requested)

    # Unknown current stage permits any target, see DESIGN.md
    if current_index == -1:
        return TransitionCheck(
            allowed=True,
            reason=TransitionReason.UNKNOWN_CURRENT,
            current_status=current,
            requested_status=requested,
        )

    if requested_index == -1:
        return TransitionCheck(
            allowed=False,
            reason=TransitionReason.UNRECOGNIZED,
            current_status=current,
            requested_status=requested,
            message=f"Unrecognized target status: {requested_status}",
        )

    if requested_index == current_index:
        return TransitionCheck(
            allowed=True,
            reason=TransitionReason.IDEMPOTENT,
            current_status=current,
            requested_status=requested,
        )

    if requested_index < current_index:
        return TransitionCheck(
            allowed=False,
            reason=TransitionReason.REGRESSION,
            current_status=current,
            requested_status=requested,
            message=(
                f'Cannot go back from "{status_label(current)}" to "{status_label(requested)}". '
                f"Regression is not allowed; status can only move forward."
            ),
        )

    if requested_index > current_index + 1:
        expected = STAGE_ORDER[current_index + 1]
        return TransitionCheck(
            allowed=False,
            reason=TransitionReason.SKIP,
            current_status=current,
            requested_status=requested,
            expected_status=expected,
            message=(
                f'Cannot skip stages. From "{status_label(current)}" you must go to '
                f'"{status_label(expected)}" before "{status_label(requested)}".'
            ),
        )

    return TransitionCheck(
        allowed=True,
        reason=TransitionReason.ADVANCE,
        current_status=current,
        requested_status=requested,
        expected_status=requested,
    )
