"""
Host Environment

Describes the running command host for manifest environment checks:
host name and version, edition, processor architecture, runtime versions,
current culture and optional capabilities.
"""

import os
import platform
from dataclasses import dataclass
from typing import List, Optional

from packaging.version import Version

from ..utils.config import (
    CULTURE_ENV_VAR,
    DEFAULT_CULTURE,
    DEFAULT_EDITION,
    DEFAULT_HOST_NAME,
    DEFAULT_HOST_VERSION,
)

# platform.machine() spellings -> processor architecture names used in manifests
_ARCHITECTURES = {
    "x86_64": "Amd64",
    "amd64": "Amd64",
    "i386": "X86",
    "i686": "X86",
    "x86": "X86",
    "aarch64": "Arm64",
    "arm64": "Arm64",
    "armv7l": "Arm",
    "arm": "Arm",
}

PROCESSOR_ARCHITECTURES = ("None", "MSIL", "X86", "IA64", "Amd64", "Arm", "Arm64")


def current_architecture() -> str:
    return _ARCHITECTURES.get(platform.machine().lower(), "None")


@dataclass(frozen=True)
class HostEnvironment:
    """The command host a module is being loaded into."""
    name: str = DEFAULT_HOST_NAME
    version: Version = Version(DEFAULT_HOST_VERSION)
    host_version: Version = Version(DEFAULT_HOST_VERSION)
    edition: str = DEFAULT_EDITION
    architecture: str = "None"
    clr_version: Version = Version("4.0")
    framework_version: Version = Version("4.8")
    culture: str = DEFAULT_CULTURE
    supports_workflows: bool = False

    @classmethod
    def current(cls, culture: Optional[str] = None) -> "HostEnvironment":
        """Defaults for this process; culture comes from CMDHOST_CULTURE when not given."""
        return cls(
            architecture=current_architecture(),
            culture=culture or os.environ.get(CULTURE_ENV_VAR) or DEFAULT_CULTURE,
        )

    def culture_chain(self) -> List[str]:
        """Most specific culture first: 'de-DE-1996' -> ['de-DE-1996', 'de-DE', 'de']."""
        chain: List[str] = []
        parts = self.culture.split("-") if self.culture else []
        while parts:
            chain.append("-".join(parts))
            parts = parts[:-1]
        return chain
