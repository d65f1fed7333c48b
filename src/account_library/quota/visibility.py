# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Persisted per-model visibility.

The file is a flat JSON map {model_name: bool}. Models that are not in the
map are visible. The file may be rewritten by another process at any time;
long-running readers call reload_if_changed() before using the map.
"""

import json
import logging
import os
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

lib_logger = logging.getLogger("account_library")

# (mtime_ns, size) of the file as last loaded or saved; None when absent
FileStamp = Optional[Tuple[int, int]]


class ModelVisibility:
    """Manages the model visibility map and its file."""

    def __init__(
        self,
        config_path: Optional[Path] = None,
        initial: Optional[Mapping[str, bool]] = None,
    ):
        """
        Args:
            config_path: JSON file to load from and save to. None keeps the
                map in memory only.
            initial: Starting values, used instead of loading the file
        """
        self.config_path = config_path
        self._loaded_stamp: FileStamp = None
        if initial is not None:
            self._visible_map: Dict[str, bool] = {k: bool(v) for k, v in initial.items()}
        else:
            self._loaded_stamp = self._stamp()
            self._visible_map = self._load()

    def _stamp(self) -> FileStamp:
        if self.config_path is None:
            return None
        try:
            st = os.stat(self.config_path)
        except FileNotFoundError:
            return None
        except OSError as e:
            lib_logger.warning(f"Could not stat model visibility file {self.config_path}: {e}")
            return None
        return (st.st_mtime_ns, st.st_size)

    def _load(self) -> Dict[str, bool]:
        """Load the map from file, or start empty."""
        if self.config_path is None or not self.config_path.exists():
            return {}
        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            lib_logger.warning(
                f"Could not read model visibility from {self.config_path}: {e}; all models visible"
            )
            return {}
        if not isinstance(data, dict):
            lib_logger.warning(
                f"Model visibility file {self.config_path} is not a JSON object; all models visible"
            )
            return {}
        return {str(k): bool(v) for k, v in data.items()}

    def reload_if_changed(self) -> bool:
        """
        Re-read the file when its modification time or size moved since the
        last load or save.

        Returns:
            True if the map was reloaded
        """
        if self.config_path is None:
            return False
        stamp = self._stamp()
        if stamp == self._loaded_stamp:
            return False
        self._loaded_stamp = stamp
        self._visible_map = self._load()
        lib_logger.info(
            f"Model visibility reloaded from {self.config_path} "
            f"({len(self.hidden_models())} hidden model(s))"
        )
        return True

    def save(self) -> bool:
        """Write the map atomically. Returns True on success."""
        if self.config_path is None:
            return False
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            temp_path = self.config_path.with_suffix(".tmp")
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(self._visible_map, f, indent=2, sort_keys=True)
            temp_path.replace(self.config_path)
            self._loaded_stamp = self._stamp()
            lib_logger.debug(f"Saved model visibility to {self.config_path}")
            return True
        except OSError as e:
            lib_logger.error(f"Failed to save model visibility to {self.config_path}: {e}")
            return False

    def is_visible(self, model_name: str) -> bool:
        return self._visible_map.get(model_name, True)

    def set_visible(self, model_name: str, visible: bool) -> bool:
        """Update one model and persist. Returns True if saved."""
        self._visible_map[model_name] = bool(visible)
        return self.save()

    def hidden_models(self) -> List[str]:
        return sorted(name for name, visible in self._visible_map.items() if not visible)

    def filter_visible(self, model_names: Iterable[str]) -> List[str]:
        return [name for name in model_names if self.is_visible(name)]

    def as_dict(self) -> Dict[str, bool]:
        return dict(self._visible_map)
