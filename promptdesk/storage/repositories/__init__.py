"""Repositories for shared storage access."""

from .notification_repo import APPROVAL, REVIEW, NotificationRepository

__all__ = ["NotificationRepository", "REVIEW", "APPROVAL"]
