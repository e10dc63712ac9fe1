"""Tests for the notification fan-out service."""

from __future__ import annotations

import pytest

from nos2bch.notifications import NOTIFICATIONS_KEY, NotificationService, PermissionEvent, TipEvent
from nos2bch.notifications.events import summarize_params
from nos2bch.storage.client import MemoryStorage


@pytest.fixture
async def service() -> NotificationService:
    storage = MemoryStorage()
    await storage.set(NOTIFICATIONS_KEY, True)
    return NotificationService(storage)


class TestEvents:
    def test_permission_title(self) -> None:
        event = PermissionEvent(host="a.com", operation="signEvent", allowed=True)
        assert event.type == "permission"
        assert event.title == "signEvent allowed for a.com"

    def test_tip_to_dict(self) -> None:
        event = TipEvent(txid="ab" * 32, amount=5000, recipient_address="bitcoincash:qq")
        assert event.to_dict() == {
            "type": "tip",
            "content": {},
            "txid": "ab" * 32,
            "amount": 5000,
            "recipient_address": "bitcoincash:qq",
        }

    def test_summarize_sign_event(self) -> None:
        params = {"event": {"kind": 1, "content": "hi", "tags": [], "created_at": 5}}
        assert summarize_params("signEvent", params) == {"kind": 1, "content": "hi", "tags": []}

    def test_summarize_other(self) -> None:
        assert summarize_params("tipBCH", {"amount": 1}) == {"amount": 1}


class TestNotificationService:
    @pytest.mark.asyncio
    async def test_fan_out(self, service: NotificationService) -> None:
        a = service.add_subscriber("a")
        b = service.add_subscriber("b")
        event = PermissionEvent(host="x.com", operation="getPublicKey", allowed=True)
        assert await service.notify(event) == 2
        assert a.get_nowait() is event
        assert b.get_nowait() is event

    @pytest.mark.asyncio
    async def test_remove_subscriber(self, service: NotificationService) -> None:
        queue = service.add_subscriber("a")
        service.remove_subscriber("a")
        service.remove_subscriber("missing")
        assert await service.notify(TipEvent()) == 0
        assert queue.empty()

    @pytest.mark.asyncio
    async def test_disabled(self) -> None:
        service = NotificationService(MemoryStorage())
        queue = service.add_subscriber("a")
        assert await service.enabled() is False
        assert await service.notify(TipEvent()) == 0
        assert queue.empty()

    @pytest.mark.asyncio
    async def test_full_queue_drops(self, service: NotificationService) -> None:
        service.add_subscriber("slow", buffer=1)
        assert await service.notify(TipEvent()) == 1
        assert await service.notify(TipEvent()) == 0
