"""
Conflict Resolution for Local/Remote Task Sync

Decides which side wins when a task changed both locally and on the remote
board since its last sync point.

Policies:
    LOCAL:  Keep the local value.
    MONDAY: Keep the remote value.
    NEWEST: Keep whichever side changed later. Ties go to local.
    PROMPT: Ask a human. Without an interactive prompt this deterministically
            falls back to NEWEST instead of blocking.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Any, Callable, Awaitable
import logging

from ..errors import ConfigurationError
from .change_tracker import ConflictRecord

logger = logging.getLogger(__name__)

WINNER_LOCAL = "local"
WINNER_MONDAY = "monday"

# Receives a conflict, returns WINNER_LOCAL or WINNER_MONDAY
PromptCallback = Callable[[ConflictRecord], Awaitable[str]]


class ConflictPolicy(Enum):
    """Conflict resolution policies selected by configuration."""
    LOCAL = "local"
    MONDAY = "monday"
    NEWEST = "newest"
    PROMPT = "prompt"

    @classmethod
    def from_string(cls, value: Any) -> "ConflictPolicy":
        """
        Convert a configuration string to a ConflictPolicy.

        Raises:
            ConfigurationError: If value does not name a policy
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            valid = ", ".join(p.value for p in cls)
            raise ConfigurationError(
                f"Unknown conflict resolution strategy: {value}. Must be one of: {valid}"
            )

    def __str__(self) -> str:
        return self.value


@dataclass
class ConflictResolution:
    """
    Outcome of resolving one conflict.

    Attributes:
        task_id: Task in conflict
        winner: WINNER_LOCAL or WINNER_MONDAY
        data: The value that must end up in the local store
        policy: Policy actually applied (PROMPT may degrade to NEWEST)
        reason: Human-readable explanation
    """
    task_id: str
    winner: str
    data: Any
    policy: ConflictPolicy
    reason: str = ""


class ConflictResolver:
    """Applies one ConflictPolicy to ConflictRecords."""

    def __init__(
        self,
        policy: ConflictPolicy = ConflictPolicy.PROMPT,
        prompt: Optional[PromptCallback] = None,
        interactive: bool = False,
    ):
        """
        Args:
            policy: Policy to apply
            prompt: Async callback asking a human to pick a side
            interactive: Whether a human is available to answer prompt
        """
        self.policy = ConflictPolicy.from_string(policy)
        self.prompt = prompt
        self.interactive = interactive
        logger.debug(f"ConflictResolver initialized with policy: {self.policy.value}")

    async def resolve(self, conflict: ConflictRecord) -> ConflictResolution:
        """Pick the winning side of a conflict."""
        if self.policy == ConflictPolicy.LOCAL:
            return self._pick(conflict, WINNER_LOCAL, ConflictPolicy.LOCAL, "local policy")
        if self.policy == ConflictPolicy.MONDAY:
            return self._pick(conflict, WINNER_MONDAY, ConflictPolicy.MONDAY, "monday policy")
        if self.policy == ConflictPolicy.NEWEST:
            return self._resolve_newest(conflict)
        return await self._resolve_prompt(conflict)

    def _resolve_newest(self, conflict: ConflictRecord) -> ConflictResolution:
        if conflict.remote_timestamp > conflict.local_timestamp:
            reason = f"remote newer ({conflict.remote_timestamp} > {conflict.local_timestamp})"
            return self._pick(conflict, WINNER_MONDAY, ConflictPolicy.NEWEST, reason)
        reason = f"local newer or equal ({conflict.local_timestamp} >= {conflict.remote_timestamp})"
        return self._pick(conflict, WINNER_LOCAL, ConflictPolicy.NEWEST, reason)

    async def _resolve_prompt(self, conflict: ConflictRecord) -> ConflictResolution:
        if not self.interactive or self.prompt is None:
            logger.warning(
                f"Conflict on task {conflict.task_id} needs a decision but no interactive "
                f"prompt is available; falling back to newest"
            )
            return self._resolve_newest(conflict)

        choice = str(await self.prompt(conflict)).lower()
        if choice not in (WINNER_LOCAL, WINNER_MONDAY):
            logger.warning(f"Unrecognized prompt answer {choice!r}; falling back to newest")
            return self._resolve_newest(conflict)

        return self._pick(conflict, choice, ConflictPolicy.PROMPT, "chosen interactively")

    def _pick(self, conflict: ConflictRecord, winner: str, policy: ConflictPolicy, reason: str) -> ConflictResolution:
        data = conflict.local_data if winner == WINNER_LOCAL else conflict.remote_data
        logger.info(f"Conflict on task {conflict.task_id}: {winner} wins ({reason})")
        return ConflictResolution(
            task_id=conflict.task_id,
            winner=winner,
            data=data,
            policy=policy,
            reason=reason,
        )


__all__ = [
    "ConflictPolicy",
    "ConflictResolver",
    "ConflictResolution",
    "PromptCallback",
    "WINNER_LOCAL",
    "WINNER_MONDAY",
]
