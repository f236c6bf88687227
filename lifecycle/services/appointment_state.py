"""
Appointment state machine.

    pending --confirm--> confirmed
    pending --cancel---> canceled

confirmed and canceled are terminal for this core. Only the token
service drives transitions.
"""

from enum import Enum

from database.models import AppointmentStatus
from shared.errors import IllegalTransitionError


class AppointmentAction(str, Enum):
    CONFIRM = "confirm"
    CANCEL = "cancel"


TRANSITIONS: dict[tuple[AppointmentStatus, AppointmentAction], AppointmentStatus] = {
    (AppointmentStatus.PENDING, AppointmentAction.CONFIRM): AppointmentStatus.CONFIRMED,
    (AppointmentStatus.PENDING, AppointmentAction.CANCEL): AppointmentStatus.CANCELED,
}

TERMINAL_STATUSES = frozenset({AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELED})


def transition(current: AppointmentStatus, action: AppointmentAction) -> AppointmentStatus:
    """
    Return the status reached by applying `action` to `current`.

    Raises:
        IllegalTransitionError: If the transition is not allowed
    """
    current = AppointmentStatus(current)
    action = AppointmentAction(action)
    target = TRANSITIONS.get((current, action))
    if target is None:
        raise IllegalTransitionError(
            f"Cannot {action.value} an appointment in status '{current.value}'",
            status=current.value,
        )
    return target


def is_terminal(status: AppointmentStatus) -> bool:
    return status in TERMINAL_STATUSES
