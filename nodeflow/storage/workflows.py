"""
Workflow document storage.

Saved workflows are ``{nodes, edges, version}`` documents in the editor's
format. Each document is written as one JSON file under a directory, and
a copy is kept in memory for fast lookup. Without a directory the store is
memory only.
"""

from typing import Any, Dict, List, Optional, Union
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
import asyncio
import json
import logging
import re

from nodeflow.config import settings


logger = logging.getLogger(__name__)

WORKFLOW_VERSION = "1.0.0"

_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


class InvalidWorkflowName(ValueError):
    """Workflow names are limited to letters, digits, '_', '.' and '-'."""


@dataclass
class StoredWorkflow:
    """A saved workflow document."""
    name: str
    document: Dict[str, Any]
    updated_at: datetime = field(default_factory=datetime.now)

    @property
    def version(self) -> str:
        return self.document.get("version", WORKFLOW_VERSION)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "node_count": len(self.document.get("nodes", [])),
            "edge_count": len(self.document.get("edges", [])),
            "updated_at": self.updated_at.isoformat(),
        }


def _check_name(name: str) -> str:
    if not _NAME_PATTERN.match(name) or name in (".", ".."):
        raise InvalidWorkflowName(f"Invalid workflow name '{name}'")
    return name


class WorkflowStore:
    """
    Store for workflow documents.

    Usage:
        store = WorkflowStore(".workflows")
        await store.save("build", {"nodes": [...], "edges": [...]})
        stored = await store.get("build")
    """

    def __init__(self, directory: Optional[Union[str, Path]] = None):
        self.directory = Path(directory) if directory else None
        self._workflows: Dict[str, StoredWorkflow] = {}
        self._lock = asyncio.Lock()

    def _path(self, name: str) -> Path:
        return self.directory / f"{name}.json"

    def _read(self, name: str) -> Optional[StoredWorkflow]:
        if self.directory is None:
            return None
        path = self._path(name)
        if not path.is_file():
            return None
        document = json.loads(path.read_text(encoding="utf-8"))
        return StoredWorkflow(
            name=name,
            document=document,
            updated_at=datetime.fromtimestamp(path.stat().st_mtime),
        )

    async def save(self, name: str, document: Dict[str, Any]) -> StoredWorkflow:
        """
        Save a workflow document, replacing any existing one.

        Args:
            name: Workflow name
            document: ``{nodes, edges, version?}``

        Returns:
            The stored workflow
        """
        _check_name(name)
        document = {
            "nodes": list(document.get("nodes", [])),
            "edges": list(document.get("edges", [])),
            "version": document.get("version") or WORKFLOW_VERSION,
        }
        async with self._lock:
            stored = StoredWorkflow(name=name, document=document)
            if self.directory is not None:
                self.directory.mkdir(parents=True, exist_ok=True)
                self._path(name).write_text(json.dumps(document, indent=2), encoding="utf-8")
            self._workflows[name] = stored
            logger.info(f"Saved workflow '{name}'")
            return stored

    async def get(self, name: str) -> Optional[StoredWorkflow]:
        """Get a workflow by name."""
        _check_name(name)
        async with self._lock:
            stored = self._workflows.get(name)
            if stored is None:
                stored = self._read(name)
                if stored is not None:
                    self._workflows[name] = stored
            return stored

    async def delete(self, name: str) -> bool:
        """Delete a workflow."""
        _check_name(name)
        async with self._lock:
            found = self._workflows.pop(name, None) is not None
            if self.directory is not None and self._path(name).is_file():
                self._path(name).unlink()
                found = True
            return found

    async def list_all(self) -> List[StoredWorkflow]:
        """List all stored workflows, sorted by name."""
        async with self._lock:
            if self.directory is not None and self.directory.is_dir():
                for path in self.directory.glob("*.json"):
                    if path.stem not in self._workflows and _NAME_PATTERN.match(path.stem):
                        stored = self._read(path.stem)
                        if stored is not None:
                            self._workflows[path.stem] = stored
            return [self._workflows[name] for name in sorted(self._workflows)]

    def __len__(self) -> int:
        return len(self._workflows)


# Global storage instance
workflow_store = WorkflowStore(settings.WORKFLOW_DIR)
