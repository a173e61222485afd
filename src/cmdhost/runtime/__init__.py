"""Host runtime: environment description and session state."""

from .environment import HostEnvironment, current_architecture
from .session import CommandInfo, CommandKind, ProviderInfo, SessionState, VariableInfo

__all__ = [
    "HostEnvironment",
    "current_architecture",
    "CommandInfo",
    "CommandKind",
    "ProviderInfo",
    "SessionState",
    "VariableInfo",
]
