import asyncio

import pytest

from services.conversation.call_state import CallEndedError, CallState, CallStateStore, CallStep


class TestCallState:
    def test_defaults(self):
        state = CallState(call_sid="CA_1", started_at=10.0)
        assert state.step == CallStep.GREETING
        assert state.intent is None
        assert state.history == []
        assert state.silence_count == 0
        assert state.last_processed is None

    def test_history_roles(self):
        state = CallState(call_sid="CA_1", started_at=10.0)
        state.add_user_message("I need a cleaning")
        state.add_assistant_message("Sure, what day works?")
        assert state.history == [
            {"role": "user", "content": "I need a cleaning"},
            {"role": "assistant", "content": "Sure, what day works?"},
        ]

    def test_sequence_pairs(self):
        state = CallState(call_sid="CA_1", started_at=10.0)
        assert state.next_sequence() == 0
        assert state.next_sequence() == 2
        assert state.next_sequence() == 4
        assert state.sequence_counter == 6

    def test_elapsed(self):
        state = CallState(call_sid="CA_1", started_at=10.0)
        assert state.elapsed(75.5) == 65.5


class TestCallStateStore:
    @pytest.mark.asyncio
    async def test_session_creates_state_lazily(self, store, clock):
        assert "CA_1" not in store
        async with store.session("CA_1") as state:
            assert state.call_sid == "CA_1"
            assert state.started_at == clock.now
        assert "CA_1" in store
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_session_returns_same_state(self, store):
        async with store.session("CA_1") as first:
            first.silence_count = 2
        async with store.session("CA_1") as second:
            assert second is first
            assert second.silence_count == 2

    @pytest.mark.asyncio
    async def test_same_call_is_serialized(self, store):
        order = []

        async def turn(label, delay):
            async with store.session("CA_1"):
                order.append(f"{label}-start")
                await asyncio.sleep(delay)
                order.append(f"{label}-end")

        await asyncio.gather(turn("a", 0.05), turn("b", 0))
        assert order == ["a-start", "a-end", "b-start", "b-end"]

    @pytest.mark.asyncio
    async def test_different_calls_do_not_contend(self, store):
        order = []

        async def turn(call_sid, delay):
            async with store.session(call_sid):
                order.append(f"{call_sid}-start")
                await asyncio.sleep(delay)
                order.append(f"{call_sid}-end")

        await asyncio.gather(turn("CA_1", 0.05), turn("CA_2", 0))
        assert order.index("CA_2-end") < order.index("CA_1-end")

    @pytest.mark.asyncio
    async def test_remove(self, store):
        async with store.session("CA_1"):
            pass
        removed = store.remove("CA_1")
        assert removed is not None
        assert store.get("CA_1") is None
        assert store.remove("CA_1") is None

    @pytest.mark.asyncio
    async def test_evicted_call_is_refused(self, store):
        async with store.session("CA_1"):
            pass
        store.remove("CA_1")

        with pytest.raises(CallEndedError):
            async with store.session("CA_1"):
                pass
        assert "CA_1" not in store
        assert store.has_ended("CA_1")

    @pytest.mark.asyncio
    async def test_waiter_queued_before_eviction_cannot_recreate_state(self, store):
        entered = asyncio.Event()
        release = asyncio.Event()

        async def first_turn():
            async with store.session("CA_1"):
                entered.set()
                await release.wait()

        async def queued_turn():
            async with store.session("CA_1"):
                pass

        first = asyncio.create_task(first_turn())
        await entered.wait()
        queued = asyncio.create_task(queued_turn())
        await asyncio.sleep(0)

        store.remove("CA_1")
        release.set()
        await first

        with pytest.raises(CallEndedError):
            await queued
        assert "CA_1" not in store
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_tombstone_expires(self, clock):
        store = CallStateStore(clock=clock, ended_ttl=60.0)
        store.remove("CA_1")
        assert store.has_ended("CA_1")

        clock.advance(61)
        assert not store.has_ended("CA_1")
        async with store.session("CA_1") as state:
            assert state.call_sid == "CA_1"

    @pytest.mark.asyncio
    async def test_expired_tombstones_are_pruned(self, clock):
        store = CallStateStore(clock=clock, ended_ttl=60.0)
        store.remove("CA_old")
        clock.advance(61)
        store.remove("CA_new")
        assert store._ended.keys() == {"CA_new"}
