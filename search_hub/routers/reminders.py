from __future__ import annotations

from fastapi import APIRouter, Depends

from ..dependencies.context import require_context
from ..schemas.reminders import ReminderOut
from ..services.context import RequestContext
from ..services.reminders import ReminderService
from .documents import get_reminder_service

router = APIRouter(prefix="/reminders")


def _serialize(reminders: list[ReminderOut]) -> dict:
    return {"reminders": [reminder.model_dump(mode="json") for reminder in reminders]}


@router.get("")
def list_reminders(
    context: RequestContext = Depends(require_context),
    service: ReminderService = Depends(get_reminder_service),
) -> dict:
    return _serialize(service.list_user_reminders(context).unwrap())


@router.get("/pending")
def list_pending_reminders(
    context: RequestContext = Depends(require_context),
    service: ReminderService = Depends(get_reminder_service),
) -> dict:
    """Scheduled and notified reminders of the current user."""
    return _serialize(service.list_pending_reminders(context).unwrap())


@router.get("/tenant")
def list_tenant_reminders(
    context: RequestContext = Depends(require_context),
    service: ReminderService = Depends(get_reminder_service),
) -> dict:
    return _serialize(service.list_tenant_reminders(context).unwrap())


@router.patch("/{reminder_id}/dismiss", response_model=ReminderOut)
def dismiss_reminder(
    reminder_id: str,
    context: RequestContext = Depends(require_context),
    service: ReminderService = Depends(get_reminder_service),
) -> ReminderOut:
    return service.dismiss_reminder(reminder_id, context).unwrap()
