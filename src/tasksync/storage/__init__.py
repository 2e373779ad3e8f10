"""Local task persistence for tasksync."""

from .local_store import JsonTaskStore

__all__ = ["JsonTaskStore"]
