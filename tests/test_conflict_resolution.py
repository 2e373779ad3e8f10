"""
Tests for ConflictResolver policies.
"""

from unittest.mock import AsyncMock

import pytest

from tasksync.errors import ConfigurationError
from tasksync.sync.change_tracker import ConflictRecord
from tasksync.sync.conflict_resolver import (
    ConflictPolicy,
    ConflictResolver,
    WINNER_LOCAL,
    WINNER_MONDAY,
)


def make_conflict(local_ts=100, remote_ts=200):
    return ConflictRecord(
        task_id="T1",
        local_data={"id": "T1", "title": "local"},
        remote_data={"id": "T1", "title": "remote"},
        local_timestamp=local_ts,
        remote_timestamp=remote_ts,
    )


class TestConflictPolicy:
    """Tests for parsing policies from configuration."""

    def test_from_string(self):
        assert ConflictPolicy.from_string("NEWEST") == ConflictPolicy.NEWEST
        assert ConflictPolicy.from_string(ConflictPolicy.LOCAL) == ConflictPolicy.LOCAL

    def test_unknown_policy_raises(self):
        with pytest.raises(ConfigurationError, match="Unknown conflict resolution strategy"):
            ConflictPolicy.from_string("last-writer")

    def test_resolver_rejects_unknown_policy(self):
        with pytest.raises(ConfigurationError):
            ConflictResolver(policy="random")


class TestFixedPolicies:
    """Tests for local and monday policies."""

    @pytest.mark.asyncio
    async def test_local_policy_keeps_local(self):
        resolver = ConflictResolver(policy="local")

        resolution = await resolver.resolve(make_conflict(remote_ts=999))

        assert resolution.winner == WINNER_LOCAL
        assert resolution.data == {"id": "T1", "title": "local"}
        assert resolution.policy == ConflictPolicy.LOCAL

    @pytest.mark.asyncio
    async def test_monday_policy_keeps_remote(self):
        resolver = ConflictResolver(policy="monday")

        resolution = await resolver.resolve(make_conflict(local_ts=999))

        assert resolution.winner == WINNER_MONDAY
        assert resolution.data == {"id": "T1", "title": "remote"}


class TestNewestPolicy:
    """Tests for timestamp comparison."""

    @pytest.mark.asyncio
    async def test_remote_newer_wins(self):
        resolution = await ConflictResolver(policy="newest").resolve(make_conflict(100, 200))

        assert resolution.winner == WINNER_MONDAY

    @pytest.mark.asyncio
    async def test_local_newer_wins(self):
        resolution = await ConflictResolver(policy="newest").resolve(make_conflict(300, 200))

        assert resolution.winner == WINNER_LOCAL

    @pytest.mark.asyncio
    async def test_tie_goes_to_local(self):
        resolution = await ConflictResolver(policy="newest").resolve(make_conflict(200, 200))

        assert resolution.winner == WINNER_LOCAL


class TestPromptPolicy:
    """Tests for interactive resolution and its fallback."""

    @pytest.mark.asyncio
    async def test_non_interactive_falls_back_to_newest(self):
        prompt = AsyncMock(return_value=WINNER_LOCAL)
        resolver = ConflictResolver(policy="prompt", prompt=prompt, interactive=False)

        resolution = await resolver.resolve(make_conflict(100, 200))

        assert resolution.winner == WINNER_MONDAY
        assert resolution.policy == ConflictPolicy.NEWEST
        prompt.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_interactive_without_callback_falls_back(self):
        resolver = ConflictResolver(policy="prompt", interactive=True)

        resolution = await resolver.resolve(make_conflict(300, 200))

        assert resolution.winner == WINNER_LOCAL
        assert resolution.policy == ConflictPolicy.NEWEST

    @pytest.mark.asyncio
    async def test_interactive_answer_is_used(self):
        prompt = AsyncMock(return_value="monday")
        resolver = ConflictResolver(policy="prompt", prompt=prompt, interactive=True)
        conflict = make_conflict(300, 200)

        resolution = await resolver.resolve(conflict)

        assert resolution.winner == WINNER_MONDAY
        assert resolution.policy == ConflictPolicy.PROMPT
        prompt.assert_awaited_once_with(conflict)

    @pytest.mark.asyncio
    async def test_unrecognized_answer_falls_back(self):
        prompt = AsyncMock(return_value="both")
        resolver = ConflictResolver(policy="prompt", prompt=prompt, interactive=True)

        resolution = await resolver.resolve(make_conflict(100, 200))

        assert resolution.winner == WINNER_MONDAY
        assert resolution.policy == ConflictPolicy.NEWEST
