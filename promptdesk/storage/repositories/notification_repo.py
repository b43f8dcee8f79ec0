"""
Notification repository.

Peer review notifications (review_notifications) and approval workflow
notifications (approval_notifications) share one access layer.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Connection

from promptdesk.storage.database import get_db
from promptdesk.storage.models import generate_uuid, now_iso, row_to_dict

REVIEW = "review"
APPROVAL = "approval"

# channel -> (table, recipient column)
_CHANNELS = {
    REVIEW: ("review_notifications", "user_id"),
    APPROVAL: ("approval_notifications", "recipient_id"),
}


def _channel(channel: str) -> tuple[str, str]:
    try:
        return _CHANNELS[channel]
    except KeyError:
        raise ValueError(f"Unknown notification channel: {channel}") from None


class NotificationRepository:
    """Repository for user notifications."""

    # =========================================================================
    # Create
    # =========================================================================

    def create_review_notification(
        self,
        user_id: str,
        notification_type: str,
        title: str,
        message: str | None = None,
        submission_id: str | None = None,
        conn: Connection | None = None,
    ) -> str:
        """Create a peer review notification.

        Args:
            user_id: Recipient
            notification_type: assignment, new_comment, review_complete, ...
            title: Short title
            message: Optional body
            submission_id: Related submission
            conn: Join an open transaction instead of committing separately

        Returns:
            The notification ID
        """
        notification_id = generate_uuid()
        params = {
            "id": notification_id,
            "user_id": user_id,
            "submission_id": submission_id,
            "notification_type": notification_type,
            "title": title,
            "message": message,
            "created_at": now_iso(),
        }
        sql = text("""
            INSERT INTO review_notifications
            (id, user_id, submission_id, notification_type, title, message, is_read, created_at)
            VALUES (:id, :user_id, :submission_id, :notification_type, :title, :message, 0, :created_at)
        """)
        self._execute(sql, params, conn)
        return notification_id

    def create_approval_notification(
        self,
        recipient_id: str,
        notification_type: str,
        subject: str,
        message: str | None = None,
        queue_id: str | None = None,
        priority: str = "normal",
        conn: Connection | None = None,
    ) -> str:
        """Create an approval workflow notification.

        Returns:
            The notification ID
        """
        notification_id = generate_uuid()
        params = {
            "id": notification_id,
            "queue_id": queue_id,
            "recipient_id": recipient_id,
            "notification_type": notification_type,
            "subject": subject,
            "message": message,
            "priority": priority,
            "created_at": now_iso(),
        }
        sql = text("""
            INSERT INTO approval_notifications
            (id, queue_id, recipient_id, notification_type, subject, message, priority,
             is_read, created_at)
            VALUES (:id, :queue_id, :recipient_id, :notification_type, :subject, :message,
                    :priority, 0, :created_at)
        """)
        self._execute(sql, params, conn)
        return notification_id

    # =========================================================================
    # Read / Update
    # =========================================================================

    def list_for_user(
        self,
        channel: str,
        user_id: str,
        unread_only: bool = False,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        """List a user's notifications, newest first."""
        table, recipient = _channel(channel)
        sql = f"SELECT * FROM {table} WHERE {recipient} = :user_id"
        if unread_only:
            sql += " AND is_read = 0"
        sql += " ORDER BY created_at DESC LIMIT :limit"

        with get_db() as conn:
            result = conn.execute(text(sql), {"user_id": user_id, "limit": limit})
            return [row_to_dict(row, bool_fields=("is_read",)) for row in result.fetchall()]

    def unread_count(self, channel: str, user_id: str) -> int:
        table, recipient = _channel(channel)
        with get_db() as conn:
            result = conn.execute(
                text(f"SELECT COUNT(*) FROM {table} WHERE {recipient} = :user_id AND is_read = 0"),
                {"user_id": user_id},
            )
            return result.fetchone()[0]

    def mark_read(self, channel: str, notification_id: str) -> bool:
        """Mark one notification read.

        Returns:
            True if the notification exists
        """
        table, _ = _channel(channel)
        with get_db() as conn:
            result = conn.execute(
                text(f"UPDATE {table} SET is_read = 1, read_at = :now WHERE id = :id"),
                {"id": notification_id, "now": now_iso()},
            )
            conn.commit()
            return result.rowcount > 0

    def mark_all_read(self, channel: str, user_id: str) -> int:
        """Mark all of a user's notifications read.

        Returns:
            Number of notifications updated
        """
        table, recipient = _channel(channel)
        with get_db() as conn:
            result = conn.execute(
                text(f"""
                UPDATE {table} SET is_read = 1, read_at = :now
                WHERE {recipient} = :user_id AND is_read = 0
                """),
                {"user_id": user_id, "now": now_iso()},
            )
            conn.commit()
            return result.rowcount

    @staticmethod
    def _execute(sql: Any, params: dict[str, Any], conn: Connection | None) -> None:
        if conn is not None:
            conn.execute(sql, params)
            return
        with get_db() as own:
            own.execute(sql, params)
            own.commit()
