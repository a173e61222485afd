"""
Static analyzers for compiled and CIM modules.

Nothing here loads or executes a component. Binary modules are scanned for
cmdlet / provider custom-attribute blobs and a FileVersion resource string;
CIM (.cdxml) modules are read as XML.
"""

import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import List, Optional

from packaging.version import Version

from ..shared import ErrorId, ModuleLoadError
from ..shared.version import parse_version
from ..utils.config import APPROVED_VERBS

logger = logging.getLogger(__name__)

# Custom attribute blob: prolog 0x0001, then SerStrings (length byte + UTF-8)
_CMDLET_BLOB_RE = re.compile(
    rb"\x01\x00([\x01-\x7f])([A-Za-z][A-Za-z0-9]*)([\x01-\x7f])([A-Za-z][A-Za-z0-9]*)\x00\x00",
    re.DOTALL,
)
# Provider blob: prolog, provider name, int32 capabilities, zero named arguments
_PROVIDER_BLOB_RE = re.compile(rb"\x01\x00([\x01-\x7f])([A-Za-z][A-Za-z0-9]*)[\x00-\xff]\x00\x00\x00\x00\x00", re.DOTALL)
_CMDLET_ATTRIBUTE = b"CmdletAttribute"
_PROVIDER_ATTRIBUTE = b"CmdletProviderAttribute"
_FILE_VERSION_KEY = "FileVersion".encode("utf-16-le") + b"\x00\x00"


@dataclass
class BinaryAnalysis:
    command_names: List[str] = field(default_factory=list)
    version: Optional[Version] = None
    providers: List[str] = field(default_factory=list)


class StaticBinaryAnalyzer:
    """
    Default binary analyzer: `analyze(path) -> BinaryAnalysis`.

    Cmdlet blobs are accepted only when the verb is an approved verb, which
    keeps stray byte sequences from being reported as commands.
    """

    def analyze(self, path: str) -> BinaryAnalysis:
        try:
            with open(path, "rb") as f:
                data = f.read()
        except OSError as e:
            raise ModuleLoadError(f"Could not load file or assembly '{path}': {e}", ErrorId.LOAD_FAILURE, path=path)
        analysis = BinaryAnalysis(
            command_names=self._cmdlet_names(data),
            version=self._file_version(data),
            providers=self._provider_names(data),
        )
        logger.debug(f"Binary {path}: commands={analysis.command_names} providers={analysis.providers}"
                     f" version={analysis.version}")
        return analysis

    @staticmethod
    def _cmdlet_names(data: bytes) -> List[str]:
        if _CMDLET_ATTRIBUTE not in data:
            return []
        names: List[str] = []
        for match in _CMDLET_BLOB_RE.finditer(data):
            verb_len, verb, noun_len, noun = match.group(1)[0], match.group(2), match.group(3)[0], match.group(4)
            if verb_len != len(verb) or noun_len != len(noun):
                continue
            verb_text = verb.decode("ascii")
            if verb_text.lower() not in APPROVED_VERBS:
                continue
            name = f"{verb_text}-{noun.decode('ascii')}"
            if name not in names:
                names.append(name)
        return names

    @staticmethod
    def _provider_names(data: bytes) -> List[str]:
        if _PROVIDER_ATTRIBUTE not in data:
            return []
        names: List[str] = []
        for match in _PROVIDER_BLOB_RE.finditer(data):
            length, name = match.group(1)[0], match.group(2)
            if length != len(name):
                continue
            text = name.decode("ascii")
            if text not in names:
                names.append(text)
        return names

    @staticmethod
    def _file_version(data: bytes) -> Optional[Version]:
        index = data.find(_FILE_VERSION_KEY)
        if index < 0:
            return None
        pos = index + len(_FILE_VERSION_KEY)
        while pos + 1 < len(data) and data[pos:pos + 2] == b"\x00\x00":
            pos += 2
        chars = []
        while pos + 1 < len(data):
            unit = data[pos:pos + 2]
            if unit == b"\x00\x00":
                break
            chars.append(unit.decode("utf-16-le", errors="replace"))
            pos += 2
        match = re.match(r"\d+(\.\d+){1,3}", "".join(chars).strip())
        return parse_version(match.group(0)) if match else None


class CimModuleAnalyzer:
    """Command names and version of a cmdlets-over-objects (.cdxml) file."""

    def analyze(self, path: str) -> BinaryAnalysis:
        try:
            tree = ET.parse(path)
        except (ET.ParseError, OSError) as e:
            raise ModuleLoadError(f"Could not read CIM module '{path}': {e}", ErrorId.LOAD_FAILURE, path=path)
        root = tree.getroot()
        names: List[str] = []
        version: Optional[Version] = None
        for cls in _children(root, "Class"):
            noun = _text(cls, "DefaultNoun")
            version = version or parse_version(_text(cls, "Version"))
            for section in _children(cls, "InstanceCmdlets"):
                # The instance section always yields the Get cmdlet
                get_meta = [m for g in _children(section, "GetCmdlet") for m in _children(g, "CmdletMetadata")]
                if not get_meta and noun:
                    names.append(f"Get-{noun}")
                names.extend(_metadata_names(get_meta, noun))
                names.extend(_metadata_names(
                    [m for c in _children(section, "Cmdlet") for m in _children(c, "CmdletMetadata")], noun))
            for section in _children(cls, "StaticCmdlets"):
                names.extend(_metadata_names(
                    [m for c in _children(section, "Cmdlet") for m in _children(c, "CmdletMetadata")], noun))
        unique: List[str] = []
        for name in names:
            if name not in unique:
                unique.append(name)
        logger.debug(f"CIM module {path}: commands={unique}")
        return BinaryAnalysis(command_names=unique, version=version)


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _children(element: ET.Element, name: str) -> List[ET.Element]:
    return [child for child in element if _local(child.tag) == name]


def _text(element: ET.Element, name: str) -> Optional[str]:
    for child in _children(element, name):
        if child.text and child.text.strip():
            return child.text.strip()
    return None


def _metadata_names(metadata: List[ET.Element], default_noun: Optional[str]) -> List[str]:
    names = []
    for meta in metadata:
        verb = meta.get("Verb")
        noun = meta.get("Noun") or default_noun
        if verb and noun:
            names.append(f"{verb}-{noun}")
    return names
