"""
dSYM Archive Manager

Keeps the mapping from binary UUID to the debug-symbol archive (dSYM bundle)
that can symbolicate it. Archives are caller-managed files on disk; only their
paths are indexed here.
"""

import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .core import normalize_uuid
from .subprocess_runner import (
    SubProcess,
    ToolLocator,
    dwarfdump,
    dwarf_result,
    safe_print,
)
from .task_queue import TaskQueue


@dataclass(frozen=True)
class SymbolArchive:
    """A dSYM on disk and the binary UUIDs (one per slice) it covers."""
    path: str
    uuids: Tuple[str, ...] = ()

    @property
    def name(self) -> str:
        return os.path.basename(self.path)


class DsymManager:
    """Registry of imported dSYM archives, keyed by UUID."""

    DSYM_SUFFIX = ".dSYM"

    VERBOSE = False

    def __init__(self, locator: Optional[ToolLocator] = None):
        """
        Initialize an empty registry.

        Args:
            locator: Tool locator used to find dwarfdump. Defaults to the shared one.
        """
        self.locator = locator
        self._archives: Dict[str, SymbolArchive] = {}
        self._lock = threading.Lock()

    def _log(self, message: str):
        if DsymManager.VERBOSE:
            safe_print(f"[DSYM] {message}")

    def _read_uuids(self, path: str, process: Optional[SubProcess] = None) -> List[str]:
        if process is None:
            process = dwarfdump(path, locator=self.locator)
            process.run()
        return dwarf_result(process) or []

    def import_dsym(self, path: str) -> Tuple[Optional[List[str]], bool]:
        """
        Index the archive at ``path`` under every UUID it contains.

        Args:
            path: Path to a dSYM bundle or DWARF file

        Returns:
            (uuids, True) on success, (None, False) when no UUIDs were found
        """
        return self._register(path, self._read_uuids(path))

    def _register(self, path: str, raw_uuids: List[str]) -> Tuple[Optional[List[str]], bool]:
        if not raw_uuids:
            self._log(f"- {path} is not a dSYM (no UUIDs)")
            return None, False

        uuids = []
        for raw in raw_uuids:
            uuid = normalize_uuid(raw)
            if uuid not in uuids:
                uuids.append(uuid)

        archive = SymbolArchive(path=str(path), uuids=tuple(uuids))
        with self._lock:
            for uuid in uuids:
                # Last import wins
                self._archives[uuid] = archive

        self._log(f"+ {archive.name}: {', '.join(uuids)}")
        return uuids, True

    def dsym_with_uuid(self, uuid: str) -> Optional[SymbolArchive]:
        """Return the archive registered for ``uuid``, if any."""
        if not uuid:
            return None
        with self._lock:
            return self._archives.get(normalize_uuid(uuid))

    def remove(self, uuid: str) -> Optional[SymbolArchive]:
        with self._lock:
            return self._archives.pop(normalize_uuid(uuid), None)

    def clear(self) -> None:
        with self._lock:
            self._archives.clear()

    def uuids(self) -> List[str]:
        with self._lock:
            return sorted(self._archives)

    def archives(self) -> List[SymbolArchive]:
        """Distinct archives, in the order they were first registered."""
        with self._lock:
            seen = []
            for archive in self._archives.values():
                if archive not in seen:
                    seen.append(archive)
            return seen

    def find_candidates(self, directory: str) -> List[str]:
        """dSYM bundles below ``directory`` (nested bundles are not searched)."""
        root = Path(directory)
        if not root.is_dir():
            return []

        found = []
        for current, dirnames, _files in os.walk(root):
            bundles = [d for d in dirnames if d.endswith(self.DSYM_SUFFIX)]
            for name in sorted(bundles):
                found.append(str(Path(current) / name))
            dirnames[:] = sorted(d for d in dirnames if not d.endswith(self.DSYM_SUFFIX))
        return found

    def import_directory(self, directory: str, queue: TaskQueue,
                         timeout: Optional[float] = None) -> List[str]:
        """
        Import every dSYM bundle below ``directory``.

        dwarfdump runs through ``queue``; registration happens here, in the
        order the bundles were found, so later bundles win on duplicate UUIDs.

        Returns:
            All UUIDs that were registered
        """
        candidates = self.find_candidates(directory)
        if not candidates:
            self._log(f"No dSYM bundles under {directory}")
            return []

        self._log(f"Importing {len(candidates)} dSYM bundles from {directory}")
        processes = []
        for path in candidates:
            process = dwarfdump(path, locator=self.locator)
            queue.submit(process)
            processes.append((path, process))

        queue.wait([p for _, p in processes], timeout=timeout)

        registered = []
        for path, process in processes:
            if process.future is None or not process.future.done():
                # Queued runs must not launch once we stop waiting for them
                queue.cancel(process)
                self._log(f"- {path}: dwarfdump did not finish in time")
                continue
            uuids, success = self._register(path, self._read_uuids(path, process))
            if success:
                registered.extend(uuids)
        return registered
