"""Appointment action-link route (confirm/cancel from the email)."""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from api.dependencies import get_store
from api.models.appointment_action import (
    AppointmentActionRequest,
    AppointmentActionResponse,
)
from database.repository import SqlAlchemyStore
from lifecycle.services.token_service import TokenService
from shared.errors import LifecycleError

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/api/appointments/confirm",
    responses={200: {"model": AppointmentActionResponse}},
)
async def resolve_appointment_action(
    payload: AppointmentActionRequest,
    store: SqlAlchemyStore = Depends(get_store),
) -> JSONResponse:
    """
    Confirm or cancel a pending appointment through its single-use token.

    Returns:
        200 {success, action, status, message}
        400 {error: expired|used|invalid_action|already_processed, message}
        404 {error: invalid|not_found, message}
        500 {error: server_error, message}
    """
    try:
        result = await TokenService(store).resolve(payload.token, payload.action)
    except LifecycleError as e:
        logger.info(f"Action token rejected: {e.code}")
        return JSONResponse(status_code=e.status_code, content=e.to_dict())
    except Exception as e:
        logger.exception(f"Error in confirm-appointment: {e}")
        return JSONResponse(
            status_code=500,
            content={"error": "server_error", "message": str(e)},
        )

    return JSONResponse(status_code=200, content=result.to_dict())
