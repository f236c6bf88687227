"""
Action token resolution - lets a client confirm or cancel a pending
appointment through the single-use link sent by email.

Validation order (first failure wins):
1. token exists                  -> InvalidTokenError
2. link not expired              -> TokenExpiredError
3. link not used                 -> TokenAlreadyUsedError
4. action allowed for purpose    -> InvalidActionError
5. appointment exists            -> AppointmentNotFoundError
6. appointment still pending     -> AlreadyProcessedError

On success the appointment transition, the link consumption and the
consumption of the sibling confirm/cancel links happen in one transaction.
A repeated call finds a non-pending appointment and fails safely.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from typing import Any

from database.models import AppointmentStatus, LinkPurpose
from database.repository import LinkActionOutcome, SqlAlchemyStore
from lifecycle.services.appointment_state import AppointmentAction, transition
from shared.errors import (
    AlreadyProcessedError,
    AppointmentNotFoundError,
    InvalidActionError,
    InvalidTokenError,
    TokenAlreadyUsedError,
    TokenExpiredError,
)

logger = logging.getLogger(__name__)

# A confirm link also accepts cancel so the client can cancel from the
# confirmation email.
ALLOWED_ACTIONS: dict[LinkPurpose, frozenset[AppointmentAction]] = {
    LinkPurpose.CONFIRM: frozenset({AppointmentAction.CONFIRM, AppointmentAction.CANCEL}),
    LinkPurpose.CANCEL: frozenset({AppointmentAction.CANCEL}),
}

SUCCESS_MESSAGES = {
    AppointmentAction.CONFIRM: "Cita confirmada exitosamente",
    AppointmentAction.CANCEL: "Cita cancelada exitosamente",
}

PROCESSED_STATUS_LABELS = {
    AppointmentStatus.CONFIRMED: "confirmada",
    AppointmentStatus.CANCELED: "cancelada",
}


@dataclass
class ResolutionResult:
    success: bool
    action: str
    status: str
    message: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def parse_action(action: AppointmentAction | str) -> AppointmentAction | None:
    try:
        return AppointmentAction(action)
    except ValueError:
        return None


def already_processed(status: AppointmentStatus) -> AlreadyProcessedError:
    label = PROCESSED_STATUS_LABELS.get(status, "procesada")
    return AlreadyProcessedError(f"La cita ya fue {label}", status=status.value)


class TokenService:
    """Resolves confirm/cancel action tokens against the store."""

    def __init__(self, store: SqlAlchemyStore):
        self.store = store

    async def resolve(
        self,
        token: str,
        action: AppointmentAction | str,
        now: datetime | None = None,
    ) -> ResolutionResult:
        """
        Apply `action` to the appointment bound to `token`.

        Args:
            token: Opaque token from the email link
            action: "confirm" or "cancel"
            now: Current instant (defaults to UTC now)

        Returns:
            ResolutionResult with the new appointment status

        Raises:
            LifecycleError subclass describing why the token was rejected
        """
        now = now or datetime.now(UTC)
        action = parse_action(action)

        logger.info(f"Processing {action.value if action else 'unknown action'} for action token")

        link = await self.store.get_link_by_token(token)
        if link is None:
            logger.warning("Action token not found")
            raise InvalidTokenError("Token inválido")

        if link.expires_at < now:
            raise TokenExpiredError("El enlace ha expirado")

        if link.used_at is not None:
            raise TokenAlreadyUsedError("Este enlace ya fue utilizado")

        if action is None or action not in ALLOWED_ACTIONS.get(
            LinkPurpose(link.purpose), frozenset()
        ):
            raise InvalidActionError("Acción no válida para este enlace")

        appointment = await self.store.get_appointment(link.appointment_id)
        if appointment is None:
            logger.error(
                f"Appointment {link.appointment_id} referenced by link {link.id} not found",
                extra={"appointment_id": link.appointment_id},
            )
            raise AppointmentNotFoundError("Cita no encontrada")

        current_status = AppointmentStatus(appointment.status)
        if current_status != AppointmentStatus.PENDING:
            raise already_processed(current_status)

        new_status = transition(current_status, action)

        outcome = await self.store.apply_link_action(
            link_id=link.id,
            appointment_id=appointment.id,
            new_status=new_status,
            now=now,
        )

        if outcome == LinkActionOutcome.LINK_ALREADY_USED:
            raise TokenAlreadyUsedError("Este enlace ya fue utilizado")

        if outcome == LinkActionOutcome.APPOINTMENT_NOT_PENDING:
            # Lost the race against a concurrent resolution; report what it did
            refreshed = await self.store.get_appointment(appointment.id)
            reached = (
                AppointmentStatus(refreshed.status) if refreshed else current_status
            )
            raise already_processed(reached)

        logger.info(
            f"Appointment {appointment.id} {new_status.value} via action link",
            extra={"appointment_id": appointment.id},
        )

        return ResolutionResult(
            success=True,
            action=action.value,
            status=new_status.value,
            message=SUCCESS_MESSAGES[action],
        )
