"""MessageLog: append, windowed catch-up, live tail, cancellation."""

import asyncio
import logging

import pytest

from atme.errors import StoreUnavailable, WriteFailure
from atme.models.message import Message

from conftest import settle, take


async def _append_texts(log, conversation_id, *texts, sender="A"):
    return [await log.append(conversation_id, Message.compose(sender, text=t)) for t in texts]


class TestAppend:

    @pytest.mark.asyncio
    async def test_assigns_id_and_server_timestamp(self, log, backend):
        draft = Message(sender="A", text="hi", timestamp=5)
        stored = await log.append("c1", draft)
        assert stored.id
        assert stored.timestamp is not None and stored.timestamp > 5
        raw = await backend.get(f"conversations/c1/messages/{stored.id}")
        assert raw == {"sender": "A", "text": "hi", "timestamp": stored.timestamp}

    @pytest.mark.asyncio
    async def test_timestamps_follow_append_order(self, log):
        first, second = await _append_texts(log, "c1", "one", "two")
        assert first.timestamp < second.timestamp
        assert first.id < second.id

    @pytest.mark.asyncio
    async def test_unreachable_store_raises_write_failure(self, log, backend):
        backend.offline = True
        with pytest.raises(WriteFailure) as exc:
            await log.append("c1", Message.compose("A", text="hi"))
        assert exc.value.details["cause"] == "unavailable"

    @pytest.mark.asyncio
    async def test_permission_denied_raises_write_failure(self, log, backend):
        backend.deny_writes("conversations/c1/messages")
        with pytest.raises(WriteFailure) as exc:
            await log.append("c1", Message.compose("A", text="hi"))
        assert exc.value.details["cause"] == "permission_denied"
        assert await backend.get("conversations/c1/messages") is None


class TestSubscribe:

    @pytest.mark.asyncio
    async def test_window_then_live_tail(self, log):
        existing = await _append_texts(log, "c1", "m1", "m2", "m3", "m4", "m5")
        sub = log.subscribe("c1", window_size=3)

        replayed = await take(sub, 3)
        assert [m.text for m in replayed] == ["m3", "m4", "m5"]
        assert replayed == existing[2:]
        assert [m.timestamp for m in replayed] == sorted(m.timestamp for m in replayed)

        await _append_texts(log, "c1", "m6", "m7", sender="B")
        live = await take(sub, 2)
        assert [m.text for m in live] == ["m6", "m7"]

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(sub.__anext__(), 0.05)
        sub.cancel()

    @pytest.mark.asyncio
    async def test_window_larger_than_log(self, log):
        await _append_texts(log, "c1", "only")
        sub = log.subscribe("c1", window_size=25)
        assert [m.text for m in await take(sub, 1)] == ["only"]
        sub.cancel()

    @pytest.mark.asyncio
    async def test_zero_window_only_tails(self, log):
        await _append_texts(log, "c1", "old")
        sub = log.subscribe("c1", window_size=0)
        await _append_texts(log, "c1", "new")
        assert [m.text for m in await take(sub, 1)] == ["new"]
        sub.cancel()

    @pytest.mark.asyncio
    async def test_other_conversations_not_delivered(self, log):
        sub = log.subscribe("c1", window_size=5)
        await _append_texts(log, "c2", "elsewhere")
        await _append_texts(log, "c1", "here")
        assert [m.text for m in await take(sub, 1)] == ["here"]
        sub.cancel()

    @pytest.mark.asyncio
    async def test_duplicate_child_events_delivered_once(self, log):
        sub = log.subscribe("c1", window_size=5)
        record = {"sender": "A", "text": "hi", "timestamp": 10}
        sub._on_child("added", "k1", record)
        sub._on_child("added", "k1", record)
        sub._on_child("changed", "k1", {**record, "text": "edited"})
        assert [m.text for m in await take(sub, 1)] == ["hi"]
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(sub.__anext__(), 0.05)
        sub.cancel()

    @pytest.mark.asyncio
    async def test_malformed_records_dropped_with_warning(self, log, backend, caplog):
        await backend.set("conversations/c1/messages/a-bad", {"sender": "A", "timestamp": 1})
        await backend.set(
            "conversations/c1/messages/b-bad",
            {"sender": "A", "text": "x", "attachmentRef": "y", "timestamp": 2},
        )
        await backend.set("conversations/c1/messages/c-good", {"sender": "A", "text": "ok", "timestamp": 3})

        with caplog.at_level(logging.WARNING, logger="atme.log"):
            sub = log.subscribe("c1", window_size=10)
            assert [m.text for m in await take(sub, 1)] == ["ok"]
        integrity = [r for r in caplog.records if "Integrity" in r.getMessage()]
        assert len(integrity) == 2
        sub.cancel()

    @pytest.mark.asyncio
    async def test_cancel_stops_delivery_and_discards_queue(self, log):
        sub = log.subscribe("c1", window_size=5)
        await _append_texts(log, "c1", "queued1", "queued2")
        await settle()
        sub.cancel()
        await _append_texts(log, "c1", "after")
        await settle()
        assert [m async for m in sub] == []
        assert sub.cancelled

    @pytest.mark.asyncio
    async def test_cancel_wakes_waiting_consumer(self, log):
        sub = log.subscribe("c1", window_size=5)
        received = []

        async def consume():
            async for m in sub:
                received.append(m)

        task = asyncio.create_task(consume())
        await _append_texts(log, "c1", "one")
        await settle()
        sub.cancel()
        await asyncio.wait_for(task, 1.0)
        assert [m.text for m in received] == ["one"]

    @pytest.mark.asyncio
    async def test_cancel_is_idempotent(self, log):
        sub = log.subscribe("c1")
        sub.cancel()
        sub.cancel()
        assert [m async for m in sub] == []

    @pytest.mark.asyncio
    async def test_unreachable_store(self, log, backend):
        backend.offline = True
        with pytest.raises(StoreUnavailable):
            log.subscribe("c1")

    @pytest.mark.asyncio
    async def test_negative_window_rejected(self, log):
        with pytest.raises(ValueError):
            log.subscribe("c1", window_size=-1)


class TestHistory:

    @pytest.mark.asyncio
    async def test_last_n_oldest_first(self, log, backend):
        await _append_texts(log, "c1", "a", "b", "c")
        await backend.set("conversations/c1/messages/zzz", {"sender": "A"})
        history = await log.history("c1", limit=3)
        assert [m.text for m in history] == ["b", "c"]

    @pytest.mark.asyncio
    async def test_empty(self, log):
        assert await log.history("nothing") == []
