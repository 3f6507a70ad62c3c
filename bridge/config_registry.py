"""
File-backed config registry collaborator.

Persists a ``name -> file path`` mapping as JSON so registrations survive
restarts. Registered files are recorded, not loaded.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Union

logger = logging.getLogger(__name__)


class ConfigRegistry:
    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"[CONFIG] Ignoring unreadable registry {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"[CONFIG] Ignoring registry {self.path}: expected a JSON object")
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _save(self, registry: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(registry, indent=2), encoding="utf-8")

    def register(self, name: str, file_path: str) -> Dict[str, Any]:
        registry = self._load()
        registry[name] = file_path
        self._save(registry)
        logger.info(f"[CONFIG] Registered '{name}' -> {file_path}")
        return {"success": True, "message": f"Config '{name}' registered"}

    def unregister(self, name: str) -> Dict[str, Any]:
        registry = self._load()
        if name not in registry:
            return {"error": f"Config '{name}' not found"}
        del registry[name]
        self._save(registry)
        logger.info(f"[CONFIG] Unregistered '{name}'")
        return {"success": True, "message": f"Config '{name}' unregistered"}

    def list(self) -> Dict[str, Any]:
        return {
            "configs": [
                {"name": name, "filePath": file_path, "exists": Path(file_path).exists()}
                for name, file_path in self._load().items()
            ]
        }
