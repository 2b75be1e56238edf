"""YAML-backed storage for catalog entries and script groups."""

import os
import tempfile
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml

from scriptdeck.core.discovery import ScriptEntry


class StorageError(Exception):
    """Error reading or writing the catalog store."""

    pass


@dataclass
class ScriptGroup:
    """A named, ordered collection of scripts."""

    id: int
    name: str
    description: str = ""
    created_at: datetime = field(default_factory=datetime.now)
    scripts: list[Path] = field(default_factory=list)

    def add_script(self, path: Path) -> bool:
        """Append a member; returns False if it is already in the group."""
        path = Path(path)
        if path in self.scripts:
            return False
        self.scripts.append(path)
        return True

    def remove_script(self, path: Path) -> bool:
        path = Path(path)
        if path not in self.scripts:
            return False
        self.scripts.remove(path)
        return True

    def contains(self, path: Path) -> bool:
        return Path(path) in self.scripts

    def __str__(self) -> str:
        return self.name


def _parse_time(value: Any) -> datetime | None:
    """Accept ISO strings or datetimes that YAML already converted."""
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _entry_to_dict(entry: ScriptEntry) -> dict[str, Any]:
    return {
        "path": str(entry.path),
        "name": entry.name,
        "description": entry.description,
        "tags": list(entry.tags),
        "executable": entry.executable,
        "last_modified": entry.last_modified.isoformat() if entry.last_modified else None,
    }


def _entry_from_dict(data: dict[str, Any]) -> ScriptEntry:
    return ScriptEntry(
        path=Path(data["path"]),
        name=data.get("name") or Path(data["path"]).name,
        description=data.get("description", ""),
        tags=list(data.get("tags") or []),
        last_modified=_parse_time(data.get("last_modified")),
        executable=bool(data.get("executable", False)),
    )


def _group_to_dict(group: ScriptGroup) -> dict[str, Any]:
    return {
        "id": group.id,
        "name": group.name,
        "description": group.description,
        "created_at": group.created_at.isoformat(),
        "scripts": [str(p) for p in group.scripts],
    }


def _group_from_dict(data: dict[str, Any]) -> ScriptGroup:
    if "id" not in data or "name" not in data:
        raise StorageError(f"Group record missing 'id' or 'name': {data!r}")
    return ScriptGroup(
        id=int(data["id"]),
        name=str(data["name"]),
        description=data.get("description") or "",
        created_at=_parse_time(data.get("created_at")) or datetime.now(),
        scripts=[Path(p) for p in data.get("scripts") or []],
    )


class CatalogStore:
    """
    Stores scripts and groups in a single YAML document.

    Every call reads or rewrites the whole file; writes go to a temporary
    file that replaces the old catalog, so readers never see half a document.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.RLock()

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {"scripts": [], "groups": []}
        try:
            data = yaml.safe_load(self.path.read_text()) or {}
        except OSError as e:
            raise StorageError(f"Cannot read catalog {self.path}: {e}")
        except yaml.YAMLError as e:
            raise StorageError(f"Invalid YAML in catalog {self.path}: {e}")
        if not isinstance(data, dict):
            raise StorageError(f"Catalog must be a YAML mapping: {self.path}")
        data.setdefault("scripts", [])
        data.setdefault("groups", [])
        return data

    def _save(self, data: dict[str, Any]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".catalog-", suffix=".yaml")
            try:
                with os.fdopen(fd, "w") as f:
                    yaml.safe_dump(data, f, sort_keys=False)
                os.replace(tmp, self.path)
            except BaseException:
                os.unlink(tmp)
                raise
        except OSError as e:
            raise StorageError(f"Cannot write catalog {self.path}: {e}")

    def load_all_scripts(self) -> list[ScriptEntry]:
        with self._lock:
            try:
                return [_entry_from_dict(d) for d in self._load()["scripts"]]
            except (KeyError, TypeError, ValueError) as e:
                raise StorageError(f"Malformed script record in {self.path}: {e}")

    def save_script(self, entry: ScriptEntry) -> None:
        """Insert or replace the record for entry.path."""
        with self._lock:
            data = self._load()
            record = _entry_to_dict(entry)
            scripts = [s for s in data["scripts"] if s.get("path") != record["path"]]
            scripts.append(record)
            data["scripts"] = scripts
            self._save(data)

    def save_scripts(self, entries: list[ScriptEntry]) -> None:
        """Replace the stored script list with entries."""
        with self._lock:
            data = self._load()
            data["scripts"] = [_entry_to_dict(e) for e in entries]
            self._save(data)

    def load_groups(self) -> list[ScriptGroup]:
        with self._lock:
            try:
                return [_group_from_dict(d) for d in self._load()["groups"]]
            except (TypeError, ValueError) as e:
                raise StorageError(f"Malformed group record in {self.path}: {e}")

    def create_group(self, name: str, description: str = "") -> ScriptGroup:
        """Create and store a new group with the next free id."""
        with self._lock:
            data = self._load()
            groups = self.load_groups()
            if any(g.name == name for g in groups):
                raise StorageError(f"Group already exists: {name}")
            # Ids of deleted groups are never handed out again
            next_id = max(
                int(data.get("next_group_id", 1)),
                max((g.id for g in groups), default=0) + 1,
            )
            group = ScriptGroup(id=next_id, name=name, description=description)
            data["groups"].append(_group_to_dict(group))
            data["next_group_id"] = next_id + 1
            self._save(data)
            return group

    def save_group(self, group: ScriptGroup) -> None:
        """Insert or replace the group with the same id."""
        with self._lock:
            data = self._load()
            groups = [g for g in data["groups"] if g.get("id") != group.id]
            groups.append(_group_to_dict(group))
            data["groups"] = sorted(groups, key=lambda g: g["id"])
            self._save(data)

    def get_group(self, group_id: int) -> ScriptGroup:
        for group in self.load_groups():
            if group.id == group_id:
                return group
        raise StorageError(f"Group not found: {group_id}")

    def find_group(self, name_or_id: str) -> ScriptGroup | None:
        """Look a group up by name, falling back to its numeric id."""
        groups = self.load_groups()
        for group in groups:
            if group.name == name_or_id:
                return group
        if name_or_id.isdigit():
            for group in groups:
                if group.id == int(name_or_id):
                    return group
        return None

    def scripts_in_group(self, group_id: int) -> list[Path]:
        """Member paths of a group, in execution order."""
        return list(self.get_group(group_id).scripts)

    def add_script_to_group(self, group_id: int, path: Path) -> bool:
        with self._lock:
            group = self.get_group(group_id)
            added = group.add_script(path)
            if added:
                self.save_group(group)
            return added

    def remove_script_from_group(self, group_id: int, path: Path) -> bool:
        with self._lock:
            group = self.get_group(group_id)
            removed = group.remove_script(path)
            if removed:
                self.save_group(group)
            return removed

    def remove_group_and_memberships(self, group_id: int) -> None:
        with self._lock:
            data = self._load()
            remaining = [g for g in data["groups"] if g.get("id") != group_id]
            if len(remaining) == len(data["groups"]):
                raise StorageError(f"Group not found: {group_id}")
            data["groups"] = remaining
            self._save(data)


def resolve_members(
    paths: list[Path],
    catalog: list[ScriptEntry],
) -> tuple[list[ScriptEntry], list[Path]]:
    """
    Match stored member paths to discovered entries.

    Returns:
        (entries in member order, paths with no discovered script)
    """
    by_path = {entry.path: entry for entry in catalog}
    found, missing = [], []
    for path in paths:
        entry = by_path.get(Path(path))
        if entry is None:
            missing.append(Path(path))
        else:
            found.append(entry)
    return found, missing
