"""Single-entry cache of the last decoded collar asset, keyed by path + mtime."""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from collar_import.contracts import ImportedMeshData, ImportStats

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImportedMeshCacheEntry:
    path: str
    mtime_ns: int
    mesh: ImportedMeshData


class ImportedMeshCache:
    """Thread-safe cache; the lock covers lookup and update, never decoding.

    ``stat_fn`` is injectable so tests can drive modification times.
    """

    def __init__(self, stat_fn: Callable[[str], os.stat_result] = os.stat):
        self._stat_fn = stat_fn
        self._lock = threading.Lock()
        self._entry: Optional[ImportedMeshCacheEntry] = None
        self.stats = ImportStats()

    def key_for(self, path) -> tuple:
        """(absolute path, mtime in ns); raises OSError when the file is gone."""
        abs_path = os.path.abspath(os.fspath(path))
        return abs_path, self._stat_fn(abs_path).st_mtime_ns

    def lookup(self, path: str, mtime_ns: int) -> Optional[ImportedMeshData]:
        with self._lock:
            entry = self._entry
            if entry is not None and entry.path == path and entry.mtime_ns == mtime_ns:
                self.stats.hits += 1
                return entry.mesh.copy()
            self.stats.misses += 1
            return None

    def store(self, path: str, mtime_ns: int, mesh: ImportedMeshData) -> None:
        with self._lock:
            self._entry = ImportedMeshCacheEntry(path, mtime_ns, mesh.copy())

    def get_or_load(self, path, loader: Callable[[str], ImportedMeshData]) -> ImportedMeshData:
        """Return a private copy of the mesh for *path*, decoding on a miss."""
        abs_path, mtime_ns = self.key_for(path)
        cached = self.lookup(abs_path, mtime_ns)
        if cached is not None:
            logger.debug("Imported mesh cache hit: %s", abs_path)
            return cached
        try:
            mesh = loader(abs_path)
        except Exception:
            with self._lock:
                self.stats.failures += 1
            raise
        self.store(abs_path, mtime_ns, mesh)
        return mesh.copy()

    def clear(self) -> None:
        with self._lock:
            self._entry = None
