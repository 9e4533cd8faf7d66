"""Model loading utilities for the FastAPI service.

Keeps a cache of loaded model versions so that `/switch?model=` can hot-swap
the active model without restarting. The active model is a single reference
replaced under a lock; requests take one snapshot of it and keep using that
snapshot even if a switch happens mid-request.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, Optional, Union

from recommender.factory import load_model
from recommender.model import ECommModel

logger = logging.getLogger(__name__)

META_FILES = ("meta.json",)


class ModelRegistryError(RuntimeError):
    """Raised when a requested model version cannot be loaded."""


@dataclass(frozen=True)
class ActiveModel:
    version: str
    model: ECommModel
    meta: Dict[str, Any] = field(default_factory=dict)


class ModelManager:
    """Keeps track of loaded model versions and the active one."""

    def __init__(
        self,
        registry: Union[str, Path],
        version: str,
        model_name: str = "ecomm",
        loader: Callable[[Path], ECommModel] = load_model,
    ) -> None:
        self.registry = Path(registry)
        self.model_name = model_name
        self._loader = loader
        self._lock = Lock()
        self._cache: Dict[str, ActiveModel] = {}
        self._active: Optional[ActiveModel] = None
        try:
            self.switch(version)
        except ModelRegistryError as e:
            logger.warning(f"No model active at startup: {e}")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _artifact_dir(self, version: str) -> Path:
        path = self.registry / version / self.model_name
        if not path.exists():
            raise ModelRegistryError(f"Model {self.model_name} version {version} not found at {path}")
        return path

    def _load_version_meta(self, model_dir: Path) -> Dict[str, Any]:
        version_dir = model_dir.parent
        for fname in META_FILES:
            candidate = version_dir / fname
            if candidate.exists():
                return json.loads(candidate.read_text())
        return {}

    def _load(self, version: str) -> ActiveModel:
        if version in self._cache:
            return self._cache[version]
        model_dir = self._artifact_dir(version)
        try:
            model = self._loader(model_dir)
        except FileNotFoundError as e:
            raise ModelRegistryError(f"Incomplete artifacts for version {version}: {e}") from e
        meta = {"model": dict(model.meta), "version": {"version": version, **self._load_version_meta(model_dir)}}
        entry = ActiveModel(version=version, model=model, meta=meta)
        self._cache[version] = entry
        return entry

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    @property
    def current_version(self) -> Optional[str]:
        active = self._active
        return active.version if active else None

    def active(self) -> Optional[ActiveModel]:
        """Snapshot of the active model (None when nothing is loaded)."""
        return self._active

    def describe_active(self) -> Dict[str, Any]:
        active = self._active
        if active is None:
            return {"model_name": self.model_name, "model_version": None, "meta": {}}
        return {
            "model_name": self.model_name,
            "model_version": active.version,
            "summary": active.model.summary(),
            "meta": active.meta,
        }

    def switch(self, version: str) -> Dict[str, Any]:
        with self._lock:
            previous_version = self.current_version
            entry = self._load(version)
            # single reference assignment; in-flight requests keep their snapshot
            self._active = entry
        logger.info(f"Active model: {previous_version} -> {version} ({entry.model})")
        return {
            "model_name": self.model_name,
            "model_version": version,
            "previous_version": previous_version,
            "meta": entry.meta,
        }
