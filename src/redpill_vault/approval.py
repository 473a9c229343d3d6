"""Per-project approval for secret injection.

Approvals are keyed by absolute project root path. Writes rewrite the whole
file; concurrent writers race and the last one wins.
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from .config import get_approved_path


class ApprovalStore:
    """JSON file mapping project roots to {"approvedAt": timestamp}."""

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else get_approved_path()

    def _load(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text())
        except (OSError, ValueError):
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, store: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(store, indent=2) + "\n")

    @staticmethod
    def _key(project_root: Union[str, Path]) -> str:
        return str(Path(project_root).absolute())

    def is_approved(self, project_root: Union[str, Path]) -> bool:
        return self._key(project_root) in self._load()

    def approve(self, project_root: Union[str, Path]) -> None:
        store = self._load()
        store[self._key(project_root)] = {
            "approvedAt": datetime.now(timezone.utc).isoformat(),
        }
        self._save(store)

    def revoke(self, project_root: Union[str, Path]) -> bool:
        """Remove approval. True if the project was approved."""
        store = self._load()
        removed = store.pop(self._key(project_root), None) is not None
        self._save(store)
        return removed

    def approved_at(self, project_root: Union[str, Path]) -> Optional[str]:
        entry = self._load().get(self._key(project_root))
        return entry.get("approvedAt") if isinstance(entry, dict) else None
