"""Notification inbox routes.

Both notification channels share these endpoints:
- review: peer review assignments, comments and completed reviews
- approval: approval queue decisions, revisions and SLA alerts
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from promptdesk.core.security import require_actor
from promptdesk.storage.repositories import NotificationRepository

router = APIRouter(prefix="/notifications", tags=["notifications"])

_repo = NotificationRepository()


class Channel(str, Enum):
    REVIEW = "review"
    APPROVAL = "approval"


class UnreadCount(BaseModel):
    channel: Channel
    unread: int


class MarkAllResult(BaseModel):
    updated: int


@router.get("/{channel}")
def list_notifications(
    channel: Channel,
    unread_only: bool = False,
    limit: int = Query(default=50, ge=1, le=200),
    actor_id: str = Depends(require_actor),
) -> list[dict[str, Any]]:
    """The acting user's notifications, newest first."""
    return _repo.list_for_user(channel.value, actor_id, unread_only=unread_only, limit=limit)


@router.get("/{channel}/unread-count", response_model=UnreadCount)
def unread_count(channel: Channel, actor_id: str = Depends(require_actor)) -> UnreadCount:
    return UnreadCount(channel=channel, unread=_repo.unread_count(channel.value, actor_id))


@router.post("/{channel}/{notification_id}/read")
def mark_read(channel: Channel, notification_id: str, _: str = Depends(require_actor)) -> dict[str, str]:
    if not _repo.mark_read(channel.value, notification_id):
        raise HTTPException(status_code=404, detail=f"Notification not found: {notification_id}")
    return {"status": "read", "id": notification_id}


@router.post("/{channel}/read-all", response_model=MarkAllResult)
def mark_all_read(channel: Channel, actor_id: str = Depends(require_actor)) -> MarkAllResult:
    return MarkAllResult(updated=_repo.mark_all_read(channel.value, actor_id))
