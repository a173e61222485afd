"""
Session State

Single scope stack holding the command, alias and variable tables of one
host session, plus its module table. Names are case-insensitive. Every
binding made by an import carries a back-reference to the owning module so
it can be removed again.
"""

from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Optional

if TYPE_CHECKING:
    from ..modules.module_info import ResolvedModule


class CommandKind(Enum):
    ALIAS = "Alias"
    FUNCTION = "Function"
    CMDLET = "Cmdlet"


@dataclass
class CommandInfo:
    name: str
    kind: CommandKind
    definition: str = ""
    module: Optional["ResolvedModule"] = None


@dataclass
class VariableInfo:
    name: str
    value: Any = None
    module: Optional["ResolvedModule"] = None


@dataclass
class ProviderInfo:
    name: str
    module: Optional["ResolvedModule"] = None


@dataclass
class Scope:
    commands: Dict[str, CommandInfo] = field(default_factory=dict)
    variables: Dict[str, VariableInfo] = field(default_factory=dict)

    def remove_owned_by(self, module: "ResolvedModule") -> List[str]:
        removed = []
        for table in (self.commands, self.variables):
            for key in [k for k, v in table.items() if v.module is module]:
                removed.append(table.pop(key).name)
        return removed


# Lookup order when several kinds share one name
_COMMAND_PRECEDENCE = (CommandKind.ALIAS, CommandKind.FUNCTION, CommandKind.CMDLET)


def _command_key(kind: CommandKind, name: str) -> str:
    return f"{kind.value}:{name.lower()}"


class SessionState:
    """
    Scope stack for one session.
    - enter_scope(): push a local scope
    - exit_scope(): pop it
    - set_*(..., local=True): bind into the current (top) scope
    - get_*(): lookup from top scope outward
    """

    def __init__(self, name: str = "global"):
        self.name = name
        self._scope_stack: List[Scope] = [Scope()]
        self.modules: Dict[str, "ResolvedModule"] = {}
        self.providers: Dict[str, ProviderInfo] = {}
        self.type_files: List[str] = []
        self.format_files: List[str] = []

    # ------------------------------------------------------------------
    # Scopes
    # ------------------------------------------------------------------

    def enter_scope(self) -> None:
        self._scope_stack.append(Scope())

    def exit_scope(self) -> None:
        if len(self._scope_stack) <= 1:
            raise RuntimeError("Cannot exit scope: only the global scope is active")
        self._scope_stack.pop()

    @contextmanager
    def scope(self) -> Iterator[None]:
        """Enter a local scope for the duration of the block."""
        self.enter_scope()
        try:
            yield
        finally:
            self.exit_scope()

    @property
    def global_scope(self) -> Scope:
        return self._scope_stack[0]

    @property
    def current_scope(self) -> Scope:
        return self._scope_stack[-1]

    def _target(self, local: bool) -> Scope:
        return self.current_scope if local else self.global_scope

    # ------------------------------------------------------------------
    # Commands and variables
    # ------------------------------------------------------------------

    def set_command(self, name: str, kind: CommandKind, definition: str = "",
                    module: Optional["ResolvedModule"] = None, local: bool = False) -> CommandInfo:
        info = CommandInfo(name=name, kind=kind, definition=definition, module=module)
        self._target(local).commands[_command_key(kind, name)] = info
        return info

    def set_function(self, name: str, definition: str = "", module: Optional["ResolvedModule"] = None,
                     local: bool = False) -> CommandInfo:
        return self.set_command(name, CommandKind.FUNCTION, definition, module, local)

    def set_cmdlet(self, name: str, implementing_type: str = "", module: Optional["ResolvedModule"] = None,
                   local: bool = False) -> CommandInfo:
        return self.set_command(name, CommandKind.CMDLET, implementing_type, module, local)

    def set_alias(self, name: str, target: str, module: Optional["ResolvedModule"] = None,
                  local: bool = False) -> CommandInfo:
        return self.set_command(name, CommandKind.ALIAS, target, module, local)

    def set_variable(self, name: str, value: Any, module: Optional["ResolvedModule"] = None,
                     local: bool = False) -> VariableInfo:
        info = VariableInfo(name=name, value=value, module=module)
        self._target(local).variables[name.lower()] = info
        return info

    def get_command(self, name: str, kind: Optional[CommandKind] = None) -> Optional[CommandInfo]:
        """Resolve a command name from the innermost scope outward."""
        kinds = (kind,) if kind is not None else _COMMAND_PRECEDENCE
        for scope in reversed(self._scope_stack):
            for k in kinds:
                info = scope.commands.get(_command_key(k, name))
                if info is not None:
                    return info
        return None

    def get_variable(self, name: str) -> Optional[VariableInfo]:
        for scope in reversed(self._scope_stack):
            info = scope.variables.get(name.lower())
            if info is not None:
                return info
        return None

    def commands(self, module: Optional["ResolvedModule"] = None) -> List[CommandInfo]:
        """All visible command bindings, optionally only those owned by module."""
        seen: Dict[str, CommandInfo] = {}
        for scope in reversed(self._scope_stack):
            for key, info in scope.commands.items():
                seen.setdefault(key, info)
        infos = list(seen.values())
        if module is not None:
            infos = [i for i in infos if i.module is module]
        return infos

    def remove_by_module(self, module: "ResolvedModule") -> List[str]:
        """Drop every command, alias, variable and provider bound by module."""
        removed: List[str] = []
        for scope in self._scope_stack:
            removed.extend(scope.remove_owned_by(module))
        for key in [k for k, p in self.providers.items() if p.module is module]:
            removed.append(self.providers.pop(key).name)
        return removed

    # ------------------------------------------------------------------
    # Providers, type/format files, module table
    # ------------------------------------------------------------------

    def add_provider(self, name: str, module: Optional["ResolvedModule"] = None) -> ProviderInfo:
        info = ProviderInfo(name=name, module=module)
        self.providers[name.lower()] = info
        return info

    def add_type_file(self, path: str) -> None:
        if path not in self.type_files:
            self.type_files.append(path)

    def add_format_file(self, path: str) -> None:
        if path not in self.format_files:
            self.format_files.append(path)

    def remove_type_and_format_files(self, paths: List[str]) -> None:
        drop = set(paths)
        self.type_files = [p for p in self.type_files if p not in drop]
        self.format_files = [p for p in self.format_files if p not in drop]

    def register_module(self, module: "ResolvedModule") -> None:
        """One instance per key: a re-registration replaces the previous instance."""
        self.modules[module.key] = module

    def unregister_module(self, module: "ResolvedModule") -> bool:
        current = self.modules.get(module.key)
        if current is module:
            del self.modules[module.key]
            return True
        return False

    def find_modules(self, name: str) -> List["ResolvedModule"]:
        folded = name.lower()
        return [m for m in self.modules.values() if m.name.lower() == folded]
