"""Permission-use notifications."""

from __future__ import annotations

from nos2bch.notifications.events import PermissionEvent, RawEvent, TipEvent
from nos2bch.notifications.service import NOTIFICATIONS_KEY, NotificationService

__all__ = ["NOTIFICATIONS_KEY", "NotificationService", "PermissionEvent", "RawEvent", "TipEvent"]
