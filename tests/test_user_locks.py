"""
Tests for the per-user lock registry.
"""

import asyncio
import gc

import pytest

from llmreq.services.user_locks import UserLockRegistry


class TestUserLockRegistry:
    """Tests for UserLockRegistry."""

    def test_same_user_same_lock(self):
        registry = UserLockRegistry()
        assert registry.lock_for("alice") is registry.lock_for("alice")

    def test_different_users_different_locks(self):
        registry = UserLockRegistry()
        assert registry.lock_for("alice") is not registry.lock_for("bob")

    def test_unused_locks_are_dropped(self):
        """Locks nobody references are released from the registry."""
        registry = UserLockRegistry()
        lock = registry.lock_for("alice")
        assert len(registry) == 1

        del lock
        gc.collect()

        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_hold_serializes_same_user(self):
        """Critical sections for one user never interleave."""
        registry = UserLockRegistry()
        events: list[str] = []

        async def section(name: str) -> None:
            async with registry.hold("alice"):
                events.append(f"{name}-start")
                await asyncio.sleep(0.01)
                events.append(f"{name}-end")

        await asyncio.gather(section("a"), section("b"))

        assert events in (
            ["a-start", "a-end", "b-start", "b-end"],
            ["b-start", "b-end", "a-start", "a-end"],
        )

    @pytest.mark.asyncio
    async def test_hold_does_not_block_other_users(self):
        registry = UserLockRegistry()

        async with registry.hold("alice"):
            async with asyncio.timeout(1):
                async with registry.hold("bob"):
                    pass
