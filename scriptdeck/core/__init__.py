"""Core scriptdeck functionality."""

from scriptdeck.core.context import Context
from scriptdeck.core.credentials import (
    ConsolePrompt,
    CredentialBroker,
    MarshalledPrompt,
    SecretPrompt,
)
from scriptdeck.core.discovery import (
    InvalidInputError,
    ScriptEntry,
    discover_scripts,
    filter_scripts,
    find_script,
)
from scriptdeck.core.groups import (
    CallbackObserver,
    GroupObserver,
    GroupOrchestrator,
    GroupSummary,
)
from scriptdeck.core.privilege import (
    Classification,
    ClassificationSummary,
    PrivilegeClassifier,
)
from scriptdeck.core.runner import ErrorKind, ExecutionResult, ScriptRunner
from scriptdeck.core.store import CatalogStore, ScriptGroup, StorageError

__all__ = [
    "CallbackObserver",
    "CatalogStore",
    "Classification",
    "ClassificationSummary",
    "ConsolePrompt",
    "Context",
    "CredentialBroker",
    "ErrorKind",
    "ExecutionResult",
    "GroupObserver",
    "GroupOrchestrator",
    "GroupSummary",
    "InvalidInputError",
    "MarshalledPrompt",
    "PrivilegeClassifier",
    "ScriptEntry",
    "ScriptGroup",
    "ScriptRunner",
    "SecretPrompt",
    "StorageError",
    "discover_scripts",
    "filter_scripts",
    "find_script",
]
