"""Task log persistence."""

from .task_log_store import JsonlTaskLogStore, TaskLogStore

__all__ = ["JsonlTaskLogStore", "TaskLogStore"]
