"""Git operations helpers."""

from .manager import GitCheckoutResult, GitCommandError, GitRepositoryManager
from .refs import RefUpdate, parse_updates, select_target

__all__ = [
    "GitCheckoutResult",
    "GitCommandError",
    "GitRepositoryManager",
    "RefUpdate",
    "parse_updates",
    "select_target",
]
