"""Import-Module / Get-Module / Remove-Module surface."""

from .module_manager import ImportResult, ModuleManager

__all__ = ["ImportResult", "ModuleManager"]
