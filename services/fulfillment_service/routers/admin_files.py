"""Admin tuning file status router."""

import uuid

from fastapi import APIRouter, Depends
from libs.auth.dependencies import require_admin
from libs.auth.models import AuthUser
from services.fulfillment_service.schemas import FileStatusResponse, FileStatusUpdate
from services.fulfillment_service.services.collaborators import (
    Collaborators,
    get_collaborators,
)
from services.fulfillment_service.services.status_transitions import (
    Actor,
    parse_file_status,
    set_estimated_time,
    transition_file_status,
)
from services.fulfillment_service.services.unit_of_work import UnitOfWork, get_uow

router = APIRouter(tags=["admin-files"])


@router.post("/files/{file_id}/status", response_model=FileStatusResponse)
async def update_file_status(
    file_id: uuid.UUID,
    payload: FileStatusUpdate,
    current_user: AuthUser = Depends(require_admin),
    uow: UnitOfWork = Depends(get_uow),
    collaborators: Collaborators = Depends(get_collaborators),
):
    """
    Change a file's status, or set its estimated processing time.

    Setting an estimate moves the file to PENDING, so a status sent along
    with an estimate is ignored.
    """
    actor = Actor.from_user(current_user)
    if payload.estimated_processing_time is not None:
        await set_estimated_time(
            uow, collaborators, file_id, payload.estimated_processing_time, actor
        )
    else:
        target = parse_file_status(payload.status)
        await transition_file_status(uow, collaborators, file_id, target, actor)

    file = await uow.files.get(file_id)
    return file
