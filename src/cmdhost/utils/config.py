"""
Configuration constants for module resolution and the manifest reader
"""

import os
import tempfile
from typing import List, Optional

# Parser configuration constants (cache under temp dir to avoid cluttering project root)
DEFAULT_PARSER_CACHE_FILE = os.path.join(tempfile.gettempdir(), "cmdhost_manifest_parser.cache")

# File encoding constants
DEFAULT_FILE_ENCODING = "utf-8"

# Module file extensions
MANIFEST_EXTENSION = ".psd1"
PRECOMPILED_BINARY_EXTENSION = ".ni.dll"
BINARY_EXTENSION = ".dll"
SCRIPT_MODULE_EXTENSION = ".psm1"
SCRIPT_EXTENSION = ".ps1"
CIM_EXTENSION = ".cdxml"
WORKFLOW_EXTENSION = ".xaml"

# Probe order when a module base name carries no extension
MODULE_EXTENSION_PRIORITY = (
    MANIFEST_EXTENSION,
    PRECOMPILED_BINARY_EXTENSION,
    BINARY_EXTENSION,
    SCRIPT_MODULE_EXTENSION,
    SCRIPT_EXTENSION,
    CIM_EXTENSION,
)

# Recursion guard for nested / required module resolution
MAX_MODULE_NESTING_DEPTH = 10

# Name given to unnamed in-memory modules
DYNAMIC_MODULE_PREFIX = "__DynamicModule_"

# Environment variables
MODULE_PATH_ENV_VAR = "CMDHOST_MODULE_PATH"
CULTURE_ENV_VAR = "CMDHOST_CULTURE"
COLOR_ENV_VAR = "CMDHOST_COLOR"

# Host defaults
DEFAULT_HOST_NAME = "cmdhost"
DEFAULT_HOST_VERSION = "7.0"
DEFAULT_EDITION = "Core"
DEFAULT_CULTURE = "en-US"

# Variables and helper commands a manifest may reference
MANIFEST_ALLOWED_VARIABLES = ("PSScriptRoot", "PSEdition", "true", "false", "null")
MANIFEST_ALLOWED_HELPERS = ("Join-Path", "ConvertFrom-StringData")

# Approved command verbs (Verb-Noun naming convention)
APPROVED_VERBS = frozenset(v.lower() for v in (
    # common
    "Add", "Clear", "Close", "Copy", "Enter", "Exit", "Find", "Format", "Get", "Hide",
    "Join", "Lock", "Move", "New", "Open", "Optimize", "Pop", "Push", "Redo", "Remove",
    "Rename", "Reset", "Resize", "Search", "Select", "Set", "Show", "Skip", "Split",
    "Step", "Switch", "Undo", "Unlock", "Watch",
    # communications
    "Connect", "Disconnect", "Read", "Receive", "Send", "Write",
    # data
    "Backup", "Checkpoint", "Compare", "Compress", "Convert", "ConvertFrom", "ConvertTo",
    "Dismount", "Edit", "Expand", "Export", "Group", "Import", "Initialize", "Limit",
    "Merge", "Mount", "Out", "Publish", "Restore", "Save", "Sync", "Unpublish", "Update",
    # diagnostic
    "Debug", "Measure", "Ping", "Repair", "Resolve", "Test", "Trace",
    # lifecycle
    "Approve", "Assert", "Build", "Complete", "Confirm", "Deny", "Deploy", "Disable",
    "Enable", "Install", "Invoke", "Register", "Request", "Restart", "Resume", "Start",
    "Stop", "Submit", "Suspend", "Uninstall", "Unregister", "Wait",
    # security
    "Block", "Grant", "Protect", "Revoke", "Unblock", "Unprotect",
    # other
    "Use",
))

# Characters not allowed in a command noun
RESTRICTED_NOUN_CHARACTERS = '#,(){}[]&/\\$^;:"\'<>|?@`*%+=~'


def module_search_paths(env_value: Optional[str] = None) -> List[str]:
    """Search path list from CMDHOST_MODULE_PATH (os.pathsep separated, empty entries dropped)."""
    raw = env_value if env_value is not None else os.environ.get(MODULE_PATH_ENV_VAR, "")
    paths = []
    for entry in raw.split(os.pathsep):
        entry = entry.strip()
        if entry and entry not in paths:
            paths.append(entry)
    return paths
