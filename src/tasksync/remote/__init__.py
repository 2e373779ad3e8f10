"""Remote backends for tasksync."""

from .monday_client import MondayClient

__all__ = ["MondayClient"]
