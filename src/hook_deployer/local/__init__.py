"""Local command execution used by every deployment step."""

from .session import LocalCommandResult, LocalSession

__all__ = ["LocalSession", "LocalCommandResult"]
