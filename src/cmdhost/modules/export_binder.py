"""
Export Merge & Session Binder

Binds the exports of a resolved module into a session: prefixes command
names, honours NoClobber and the member filters, rewrites alias targets to
the prefixed names and checks the Verb-Noun naming convention.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from ..runtime.session import SessionState
from ..shared import ErrorReporter
from ..shared.wildcard import matches_any
from ..utils.config import APPROVED_VERBS, RESTRICTED_NOUN_CHARACTERS
from .module_info import ImportOptions, ResolvedModule

logger = logging.getLogger(__name__)


@dataclass
class ImportReport:
    imported: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    variables: List[str] = field(default_factory=list)
    naming_violations: List[str] = field(default_factory=list)


def apply_prefix(name: str, prefix: str) -> str:
    """Get-Foo + X -> Get-XFoo; names without a verb-noun boundary get the prefix prepended."""
    if not prefix:
        return name
    if "-" in name:
        verb, noun = name.split("-", 1)
        return f"{verb}-{prefix}{noun}"
    return prefix + name


def naming_violation(name: str) -> Optional[str]:
    """Reason a command name breaks the Verb-Noun convention, or None."""
    if "-" in name:
        verb, noun = name.split("-", 1)
        if verb.lower() not in APPROVED_VERBS:
            return f"the verb '{verb}' is not an approved verb"
    else:
        noun = name
    bad = sorted({ch for ch in noun if ch in RESTRICTED_NOUN_CHARACTERS})
    if bad:
        return f"the noun contains restricted characters {' '.join(bad)}"
    return None


class ExportBinder:
    """Binds module exports into sessions."""

    def __init__(self, reporter: Optional[ErrorReporter] = None):
        self.reporter = reporter

    def import_members(self,
                       module: ResolvedModule,
                       session: SessionState,
                       prefix: str = "",
                       options: Optional[ImportOptions] = None,
                       write_warnings: bool = True) -> ImportReport:
        """
        Bind exported commands, aliases and variables of module into session.

        Idempotent per (module, session) unless no_clobber: a second import
        overwrites the bindings of the first.
        """
        options = options or ImportOptions()
        report = ImportReport()
        local = options.scope_is_local
        renamed: Dict[str, str] = {}
        commands: List[str] = []

        for name, definition in module.exported_functions.items():
            if not matches_any(name, options.function_patterns):
                continue
            final = apply_prefix(name, prefix)
            renamed[name.lower()] = final
            if self._clobber_blocked(final, session, options, report):
                continue
            session.set_function(final, definition, module, local=local)
            report.imported.append(final)
            commands.append(final)

        for name, implementing_type in module.exported_cmdlets.items():
            if not matches_any(name, options.cmdlet_patterns):
                continue
            final = apply_prefix(name, prefix)
            renamed[name.lower()] = final
            if self._clobber_blocked(final, session, options, report):
                continue
            session.set_cmdlet(final, implementing_type, module, local=local)
            report.imported.append(final)
            commands.append(final)

        for name, target in module.exported_aliases.items():
            if not matches_any(name, options.alias_patterns):
                continue
            final = apply_prefix(name, prefix)
            if self._clobber_blocked(final, session, options, report):
                continue
            session.set_alias(final, renamed.get(target.lower(), target), module, local=local)
            report.imported.append(final)

        for name, value in module.exported_variables.items():
            if not matches_any(name, options.variable_patterns):
                continue
            session.set_variable(name, value, module, local=local)
            report.variables.append(name)

        for provider in module.providers:
            session.add_provider(provider, module)

        if not options.disable_name_checking:
            self._check_names(module, commands, report, write_warnings)

        module.prefix = prefix
        logger.debug(f"Imported {module.name} into session '{session.name}': "
                     f"{len(report.imported)} commands, {len(report.variables)} variables, "
                     f"{len(report.skipped)} skipped")
        return report

    def _clobber_blocked(self, final: str, session: SessionState,
                         options: ImportOptions, report: ImportReport) -> bool:
        if not options.no_clobber or session.get_command(final) is None:
            return False
        report.skipped.append(final)
        if self.reporter is not None:
            self.reporter.report_verbose(f"Skipping '{final}': a command with that name already exists (NoClobber).")
        return True

    def _check_names(self, module: ResolvedModule, commands: List[str], report: ImportReport,
                     write_warnings: bool) -> None:
        offenders: List[Tuple[str, str]] = []
        for name in commands:
            reason = naming_violation(name)
            if reason:
                offenders.append((name, reason))
        if not offenders:
            return
        report.naming_violations = [name for name, _ in offenders]
        if self.reporter is None or not write_warnings:
            return
        self.reporter.report_warning(
            f"The names of some imported commands from the module '{module.name}' include unapproved verbs"
            f" or restricted characters that might make them less discoverable.",
            path=module.path,
        )
        for name, reason in offenders:
            self.reporter.report_verbose(f"The command name '{name}' from the module '{module.name}': {reason}.",
                                         path=module.path)
