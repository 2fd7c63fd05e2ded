"""
Notification Service.

Creates in-app notifications for SLA status changes and optimizer
bottlenecks. Delivery channels are handled outside the engine.
"""

import logging

from sqlalchemy import select

from assignment_engine.models import db
from assignment_engine.models.notification import (
    NOTIFICATION_CATEGORIES,
    NOTIFICATION_SEVERITIES,
    Notification,
)

logger = logging.getLogger(__name__)


class NotificationService:
    """Stateless service class for notification operations."""

    @staticmethod
    def create(*, title, message="", category="system", severity="info",
               recipient_id=None, entity_type="", entity_id=None):
        """
        Create a single notification record.

        Returns:
            The created Notification instance (already committed).
        """
        if category not in NOTIFICATION_CATEGORIES:
            logger.warning("Unknown notification category %r; filed as system", category)
            category = "system"
        if severity not in NOTIFICATION_SEVERITIES:
            severity = "info"
        notif = Notification(
            recipient_id=recipient_id,
            title=title,
            message=message,
            category=category,
            severity=severity,
            entity_type=entity_type,
            entity_id=entity_id,
        )
        db.session.add(notif)
        db.session.commit()
        return notif

    @staticmethod
    def notify_safely(**kwargs):
        """Fire-and-forget variant: failures are logged, never raised.

        Used on status-change paths where a notification problem must not
        block the state change that triggered it.
        """
        try:
            return NotificationService.create(**kwargs)
        except Exception:
            db.session.rollback()
            logger.warning("Notification dispatch failed: %s", kwargs.get("title"), exc_info=True)
            return None

    @staticmethod
    def list_for(recipient_id=None, unread_only=False, limit=50):
        """Notifications for a recipient (plus broadcasts), newest first."""
        stmt = select(Notification)
        if recipient_id is not None:
            stmt = stmt.where(
                (Notification.recipient_id == recipient_id) | (Notification.recipient_id.is_(None))
            )
        if unread_only:
            stmt = stmt.where(Notification.is_read.is_(False))
        stmt = stmt.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit)
        return list(db.session.execute(stmt).scalars())
