"""Tests for CallSessionRegistry."""

import pytest

from callbridge.core.registry import CallCapacityError, CallSessionRegistry
from callbridge.core.session import ConnectionState


class TestCallSessionRegistry:
    """Tests for session registration and capacity."""

    @pytest.mark.asyncio
    async def test_create_and_remove(self, bridge_services, sender_factory) -> None:
        """Test sessions are keyed by connection id."""
        registry = CallSessionRegistry(max_sessions=2)

        session = await registry.create(bridge_services, sender_factory(), call_id="gw-1")

        assert session.call_id == "gw-1"
        assert registry.active_count == 1
        assert await registry.get(session.connection_id) is session
        assert await registry.remove(session.connection_id) is session
        assert registry.active_count == 0
        assert await registry.remove(session.connection_id) is None

    @pytest.mark.asyncio
    async def test_same_call_id_separate_sessions(self, bridge_services, sender_factory) -> None:
        """Test two sockets with one call id get independent sessions."""
        registry = CallSessionRegistry()

        first = await registry.create(bridge_services, sender_factory(), call_id="gw-1")
        second = await registry.create(bridge_services, sender_factory(), call_id="gw-1")

        assert first is not second
        assert registry.active_count == 2

    @pytest.mark.asyncio
    async def test_capacity(self, bridge_services, sender_factory) -> None:
        """Test creation fails at capacity."""
        registry = CallSessionRegistry(max_sessions=1)
        await registry.create(bridge_services, sender_factory())

        with pytest.raises(CallCapacityError):
            await registry.create(bridge_services, sender_factory())

    @pytest.mark.asyncio
    async def test_close_all(self, bridge_services, sender_factory) -> None:
        """Test shutdown closes every session."""
        registry = CallSessionRegistry()
        sessions = [await registry.create(bridge_services, sender_factory()) for _ in range(2)]
        for session in sessions:
            await session.on_open()

        await registry.close_all()

        assert registry.active_count == 0
        assert all(s.state == ConnectionState.CLOSED for s in sessions)
