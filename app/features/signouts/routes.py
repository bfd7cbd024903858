"""
Sign-out routes.

Creating and signing in require the matching permission and the caller's
PIN; reads are grouped into whole events.
"""
from datetime import timedelta
from typing import Annotated, List
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.errors import NotFoundError, ValidationError
from app.features.permissions.catalog import PermissionName
from app.features.permissions.dependencies import require_permissions
from app.features.settings.service import SystemSettings
from app.features.signouts.engine import SignoutEngine, SignoutFilter
from app.features.signouts.projection import SignoutEvent
from app.features.signouts.schemas import (
    GroupsRequest,
    OverdueReport,
    SignInRequest,
    SignInResponse,
    SignoutCreate,
    SignoutCreated,
    SignoutEventResponse,
    SignoutQuery,
    SignoutRecordResponse,
)
from app.features.users.dependencies import CurrentUser, confirm_pin
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter(tags=["signouts"])


def _criteria(query: SignoutQuery) -> SignoutFilter:
    if query.start_date and query.end_date and query.start_date > query.end_date:
        raise ValidationError("start_date must not be after end_date")
    return SignoutFilter(**query.model_dump())


def _responses(events: List[SignoutEvent]) -> List[SignoutEventResponse]:
    # Validate from attributes so the computed soldier fields are included
    return [SignoutEventResponse.model_validate(event) for event in events]


@router.get("", response_model=List[SignoutEventResponse])
async def list_signouts(
    query: Annotated[SignoutQuery, Query()],
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[
        User,
        Depends(require_permissions(PermissionName.VIEW_DASHBOARD, PermissionName.VIEW_LOGS, logic="OR")),
    ],
):
    """History of sign-out events, newest first, optionally filtered."""
    return _responses(await SignoutEngine(db).list_filtered(_criteria(query)))


@router.post("", response_model=SignoutCreated, status_code=status.HTTP_201_CREATED)
async def create_signout(
    body: SignoutCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_permissions(PermissionName.CREATE_SIGNOUT))],
):
    await confirm_pin(db, current_user, body.pin)
    signout_id = await SignoutEngine(db).create_event(
        body.soldiers, body.location, current_user, body.notes
    )
    return SignoutCreated(
        signout_id=signout_id,
        soldier_count=len(body.soldiers),
        message="Soldiers signed out successfully",
    )


@router.get("/reports/current", response_model=List[SignoutEventResponse])
async def current_signouts(
    current_user: CurrentUser,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Everyone still out, longest out first."""
    return _responses(await SignoutEngine(db).list_open())


@router.get("/reports/overdue", response_model=OverdueReport)
async def overdue_signouts(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_permissions(PermissionName.VIEW_DASHBOARD))],
):
    """
    Open events out longer than the configured limits.

    `overdue` holds events past `max_duration_hours`; `warning` holds the
    rest of those past `warning_threshold_hours`.
    """
    max_hours, warning_hours = await SystemSettings(db).thresholds()
    engine = SignoutEngine(db)
    overdue = await engine.list_overdue(timedelta(hours=max_hours))
    overdue_ids = {event.signout_id for event in overdue}
    warning = [
        event
        for event in await engine.list_overdue(timedelta(hours=warning_hours))
        if event.signout_id not in overdue_ids
    ]
    return OverdueReport(
        max_duration_hours=max_hours,
        warning_threshold_hours=warning_hours,
        overdue=_responses(overdue),
        warning=_responses(warning),
    )


@router.get("/logs", response_model=List[SignoutEventResponse])
async def signout_logs(
    query: Annotated[SignoutQuery, Query()],
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_permissions(PermissionName.VIEW_LOGS))],
):
    return _responses(await SignoutEngine(db).list_filtered(_criteria(query)))


@router.get("/records", response_model=List[SignoutRecordResponse])
async def signout_records(
    query: Annotated[SignoutQuery, Query()],
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_permissions(PermissionName.VIEW_LOGS))],
):
    """One row per person, for exports."""
    return await SignoutEngine(db).list_records(_criteria(query))


@router.post("/groups", response_model=List[SignoutEventResponse])
async def signout_groups(
    body: GroupsRequest,
    current_user: CurrentUser,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    return _responses(await SignoutEngine(db).list_by_ids(body.signout_ids))


@router.get("/{signout_id}", response_model=SignoutEventResponse)
async def get_signout(
    signout_id: str,
    current_user: CurrentUser,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    event = await SignoutEngine(db).get_by_id(signout_id)
    if event is None:
        raise NotFoundError("Sign-out not found")
    return SignoutEventResponse.model_validate(event)


@router.patch("/{signout_id}/signin", response_model=SignInResponse)
async def sign_in(
    signout_id: str,
    body: SignInRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_permissions(PermissionName.SIGN_IN_SOLDIERS))],
):
    """Sign every person of an open event back in."""
    await confirm_pin(db, current_user, body.pin)
    result = await SignoutEngine(db).sign_in(signout_id, current_user)
    if not result.success:
        raise ValidationError(result.reason)
    return SignInResponse(
        signout_id=signout_id,
        success=True,
        message=result.reason,
        soldier_count=result.count,
    )
