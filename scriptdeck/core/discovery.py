"""Script discovery and filtering."""

import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from scriptdeck.core.metadata import (
    UNREADABLE_DESCRIPTION,
    parse_description,
    parse_tags,
)

if TYPE_CHECKING:
    from scriptdeck.core.context import Context
    from scriptdeck.core.logging import EventLogger


SCRIPT_EXTENSION = ".sh"


class InvalidInputError(NotADirectoryError):
    """Discovery root is missing or not a directory."""

    pass


@dataclass
class ScriptEntry:
    """Represents a discovered shell script."""

    path: Path
    name: str
    description: str
    tags: list[str] = field(default_factory=list)
    last_modified: datetime | None = None
    executable: bool = False
    content: str = ""

    def __post_init__(self):
        if not str(self.path):
            raise ValueError("ScriptEntry path must not be empty")
        self.path = Path(self.path)
        clean: list[str] = []
        for tag in self.tags:
            tag = tag.strip()
            if tag and tag not in clean:
                clean.append(tag)
        self.tags = clean

    @classmethod
    def from_path(
        cls,
        path: Path,
        context: "Context | None" = None,
    ) -> "ScriptEntry | None":
        """
        Create ScriptEntry from file path.

        An unreadable file still produces an entry, with empty content.

        Args:
            path: Path to script file
            context: Optional execution context (for testing)

        Returns:
            ScriptEntry instance, or None if the file cannot be stat'ed
        """
        if context is None:
            from scriptdeck.core.context import Context
            context = Context()

        path = Path(os.path.abspath(path))
        try:
            last_modified = datetime.fromtimestamp(context.mtime(str(path)))
        except OSError:
            return None

        try:
            content = context.read_file(str(path))
        except OSError:
            content = None

        if content is None:
            description = UNREADABLE_DESCRIPTION
            tags = []
            content = ""
        else:
            description = parse_description(content)
            tags = parse_tags(content)

        return cls(
            path=path,
            name=path.name,
            description=description,
            tags=tags,
            last_modified=last_modified,
            executable=context.is_executable(str(path)),
            content=content,
        )

    def add_tag(self, tag: str) -> bool:
        """Add a tag; returns False if it was empty or already present."""
        tag = tag.strip()
        if not tag or tag in self.tags:
            return False
        self.tags.append(tag)
        return True

    def remove_tag(self, tag: str) -> bool:
        """Remove a tag; returns False if it was not present."""
        if tag not in self.tags:
            return False
        self.tags.remove(tag)
        return True

    def matches(self, tags: list[str] | None = None, query: str | None = None) -> bool:
        """
        Check if script matches filter criteria.

        Args:
            tags: Tags that must all be present
            query: Case-insensitive text searched in name, description and tags

        Returns:
            True if script matches all criteria
        """
        if tags is not None:
            script_tags = set(self.tags)
            if not all(tag in script_tags for tag in tags):
                return False

        if query is not None:
            q = query.lower()
            if not (
                q in self.name.lower()
                or q in self.description.lower()
                or any(q in tag.lower() for tag in self.tags)
            ):
                return False

        return True


def discover_scripts(
    directory: Path,
    extension: str = SCRIPT_EXTENSION,
    context: "Context | None" = None,
    logger: "EventLogger | None" = None,
) -> list[ScriptEntry]:
    """
    Discover all shell scripts in directory.

    Args:
        directory: Root directory to search
        extension: File suffix to select, matched case-insensitively
        context: Optional execution context (for testing)
        logger: Optional event logger

    Returns:
        List of discovered ScriptEntry objects, in walk order

    Raises:
        InvalidInputError: If directory does not exist or is not a directory
    """
    directory = Path(directory)
    if not directory.is_dir():
        raise InvalidInputError(f"Invalid directory path: {directory}")

    suffix = extension.lower()
    scripts = []

    for root, _dirs, files in os.walk(directory):
        for filename in files:
            if not filename.lower().endswith(suffix):
                continue
            path = Path(root) / filename
            if not path.is_file():
                continue
            script = ScriptEntry.from_path(path, context=context)
            if script is None:
                if logger is not None:
                    logger.warning("Skipping file that cannot be stat'ed", path=str(path))
                continue
            scripts.append(script)

    if logger is not None:
        logger.info("Discovery finished", root=str(directory), found=len(scripts))

    return scripts


def filter_scripts(
    scripts: list[ScriptEntry],
    tags: list[str] | None = None,
    query: str | None = None,
) -> list[ScriptEntry]:
    """
    Filter scripts by criteria.

    Args:
        scripts: List of scripts to filter
        tags: Tags that must all be present
        query: Free-text search

    Returns:
        Filtered list of scripts
    """
    return [s for s in scripts if s.matches(tags=tags, query=query)]


def find_script(scripts: list[ScriptEntry], name: str) -> ScriptEntry | None:
    """Find a script by file name, name without extension, or path."""
    for script in scripts:
        if script.name == name or script.path.stem == name or str(script.path) == name:
            return script
    return None
