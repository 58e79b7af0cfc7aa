"""Symbolication backends for Crash Symbolicator.

A backend takes a parsed ``Crash`` and a delegate, schedules the tool runs it
needs on the shared ``TaskQueue`` and fills in ``Frame.symbol`` as results
arrive. Every ``symbolicate`` call ends with exactly one
``delegate.did_finish(crash)``, delivered through the backend's dispatcher.
Unless the caller passes one, that is a ``QueueDispatcher`` and the owning
thread runs completions with ``dispatcher.run_pending()``.

Backend selection is an explicit table (see ``BACKENDS``):

    CrashType.APPLE -> AtosSymbolicator        (legacy: AppleToolSymbolicator)
    CrashType.UMENG -> AtosSymbolicator
"""
from __future__ import annotations

import os
import queue as queue_module
import re
import tempfile
import threading
import time
from concurrent.futures import Future
from enum import Enum
from functools import partial
from typing import Callable, Dict, List, Optional, Tuple, Type

from .core import Crash, CrashType, Frame
from .dsym_manager import DsymManager
from .parser import detect_type, parse
from .subprocess_runner import (
    SubProcess,
    ToolLocator,
    atos,
    atos_result,
    safe_print,
    symbolicatecrash,
)
from .task_queue import Task, TaskQueue

Dispatcher = Callable[[Callable[[], None]], None]

# atos prints the bare address back when it can't resolve one
UNRESOLVED_SYMBOL_RE = re.compile(r'^0x[0-9a-fA-F]+(\s*\+\s*\d+)?$')


class SymbolicationState(Enum):
    PENDING = "pending"
    RESOLVING = "resolving"
    DONE = "done"


class SymbolicatorDelegate:
    """Host side of a symbolication. Override what you need."""

    def dsym_for_uuid(self, uuid: str) -> Optional[str]:
        return None

    def did_finish(self, crash: Crash) -> None:
        pass


class RegistryDelegate(SymbolicatorDelegate):
    """Answers dSYM lookups from a DsymManager and forwards completion."""

    def __init__(self, manager: DsymManager,
                 on_finish: Optional[Callable[[Crash], None]] = None,
                 on_progress: Optional[Callable[[bool], None]] = None):
        self.manager = manager
        self.on_finish = on_finish
        self.on_progress = on_progress

    def dsym_for_uuid(self, uuid: str) -> Optional[str]:
        archive = self.manager.dsym_with_uuid(uuid)
        if archive is None:
            return None
        return archive.path

    def did_finish(self, crash: Crash) -> None:
        if self.on_progress:
            self.on_progress(False)
        if self.on_finish:
            self.on_finish(crash)


class InlineDispatcher:
    """Runs callbacks immediately on whichever worker finished the work.

    Only for tests and hosts that do their own thread hand-off; the default
    is a ``QueueDispatcher`` owned by the backend or controller.
    """

    def __call__(self, callback: Callable[[], None]) -> None:
        callback()


class QueueDispatcher:
    """Collects callbacks for the owning thread to run with ``run_pending``."""

    def __init__(self):
        self._callbacks: "queue_module.Queue[Callable[[], None]]" = queue_module.Queue()

    def __call__(self, callback: Callable[[], None]) -> None:
        self._callbacks.put(callback)

    def run_pending(self, timeout: Optional[float] = None) -> int:
        """Run queued callbacks. Waits up to ``timeout`` for the first one."""
        count = 0
        block = timeout is not None
        while True:
            try:
                callback = self._callbacks.get(block=block and count == 0, timeout=timeout)
            except queue_module.Empty:
                return count
            callback()
            count += 1

    def run_until(self, predicate: Callable[[], bool], timeout: float = 60.0) -> bool:
        """Pump callbacks until ``predicate()`` holds or ``timeout`` passes."""
        deadline = time.monotonic() + timeout
        while not predicate():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            self.run_pending(timeout=min(remaining, 0.1))
        return True


class SymbolicationJob:
    """Tracks one ``symbolicate`` call from PENDING to DONE."""

    def __init__(self, crash: Crash, delegate: SymbolicatorDelegate, dispatcher: Dispatcher):
        self.crash = crash
        self.delegate = delegate
        self.dispatcher = dispatcher
        self.state = SymbolicationState.PENDING
        self.tasks: List[Task] = []
        self.future: Future = Future()
        self.cancelled = False
        self._remaining = 0
        self._lock = threading.Lock()

    def start(self, unit_count: int) -> None:
        with self._lock:
            self.state = SymbolicationState.RESOLVING
            self._remaining = unit_count
        if unit_count == 0:
            self._finish()

    def unit_done(self) -> None:
        with self._lock:
            self._remaining -= 1
            last = self._remaining == 0
        if last:
            self._finish()

    def cancel(self) -> None:
        """Cancel outstanding units. Completion still fires once."""
        self.cancelled = True
        for task in list(self.tasks):
            task.cancel()

    def wait(self, timeout: Optional[float] = None) -> bool:
        try:
            self.future.result(timeout=timeout)
            return True
        except Exception:
            return False

    @property
    def is_done(self) -> bool:
        return self.state == SymbolicationState.DONE

    def _finish(self) -> None:
        with self._lock:
            if self.state == SymbolicationState.DONE:
                return
            self.state = SymbolicationState.DONE
        self.dispatcher(partial(self.delegate.did_finish, self.crash))
        self.future.set_result(self.crash)


class Symbolicator:
    """Base backend: schedules units of work and merges their results."""

    VERBOSE = False

    def __init__(self, task_queue: TaskQueue, dispatcher: Optional[Dispatcher] = None,
                 locator: Optional[ToolLocator] = None):
        self.queue = task_queue
        self.dispatcher = dispatcher if dispatcher is not None else QueueDispatcher()
        self.locator = locator

    def _log(self, message: str):
        if Symbolicator.VERBOSE:
            safe_print(f"[SYM] {message}")

    def prepare(self, crash: Crash,
                delegate: SymbolicatorDelegate) -> List[Tuple[Task, Callable[[Task], None]]]:
        """Return (unit, merge) pairs; ``merge(unit)`` writes results into ``crash``."""
        raise NotImplementedError

    def symbolicate(self, crash: Crash, delegate: SymbolicatorDelegate) -> SymbolicationJob:
        job = SymbolicationJob(crash, delegate, self.dispatcher)
        units = self.prepare(crash, delegate)
        self._log(f"{type(self).__name__}: {len(units)} units for "
                  f"{len(crash.all_frames())} frames")

        job.tasks = [task for task, _ in units]
        job.start(len(units))
        for task, merge in units:
            task.add_done_callback(partial(self._complete_unit, job, merge))
            self.queue.submit(task)
        return job

    def _complete_unit(self, job: SymbolicationJob, merge: Callable[[Task], None],
                       task: Task) -> None:
        try:
            if not task.is_cancelled and not job.cancelled:
                merge(task)
        except Exception as e:
            self._log(f"Could not merge {task.name}: {type(e).__name__}: {e}")
        finally:
            job.unit_done()


class AtosSymbolicator(Symbolicator):
    """One atos run per image, batching every address that falls in it."""

    DEFAULT_ARCH = "arm64"

    def prepare(self, crash, delegate):
        units = []
        for image_index in crash.referenced_image_indexes():
            image = crash.images[image_index]
            dsym = delegate.dsym_for_uuid(image.uuid)
            if not dsym:
                self._log(f"- No dSYM for {image.name} <{image.uuid}>")
                continue

            frames = crash.frames_for_image(image_index)
            addresses: List[int] = []
            for frame in frames:
                if frame.address not in addresses:
                    addresses.append(frame.address)

            arch = image.arch or crash.arch or self.DEFAULT_ARCH
            process = atos(
                image.load_address_hex,
                [f"0x{a:x}" for a in addresses],
                dsym,
                arch=arch,
                locator=self.locator,
            )
            units.append((process, partial(self._merge, frames, addresses)))
        return units

    def _merge(self, frames: List[Frame], addresses: List[int], process: SubProcess) -> None:
        symbols = atos_result(process)
        if not symbols:
            return

        # atos answers in the order the addresses were given
        by_address: Dict[int, str] = {}
        for address, symbol in zip(addresses, symbols):
            symbol = symbol.strip()
            if symbol and not UNRESOLVED_SYMBOL_RE.match(symbol):
                by_address[address] = symbol

        for frame in frames:
            symbol = by_address.get(frame.address)
            if symbol:
                frame.symbol = symbol


class SymbolicateCrashTask(Task):
    """Writes the report to a temp file and runs symbolicatecrash on it."""

    def __init__(self, crash: Crash, dsym_paths: List[str],
                 locator: Optional[ToolLocator] = None):
        super().__init__(name="symbolicatecrash")
        self.crash = crash
        self.dsym_paths = dsym_paths
        self.locator = locator
        self.process: Optional[SubProcess] = None
        self.result: Optional[str] = None

    def cancel(self) -> None:
        super().cancel()
        if self.process is not None:
            self.process.cancel()

    def main(self) -> Optional[str]:
        if self.is_cancelled:
            return None

        with tempfile.NamedTemporaryFile('w', suffix='.crash', delete=False,
                                         encoding='utf-8') as f:
            f.write("\n".join(self.crash.raw_lines))
            crash_path = f.name

        try:
            self.process = symbolicatecrash(crash_path, self.dsym_paths, locator=self.locator)
            if self.is_cancelled:
                return None
            self.result = self.process.run()
            return self.result
        finally:
            try:
                os.unlink(crash_path)
            except OSError:
                pass


class AppleToolSymbolicator(Symbolicator):
    """Legacy backend: lets symbolicatecrash rewrite the whole report."""

    def prepare(self, crash, delegate):
        dsym_paths = []
        for image_index in crash.referenced_image_indexes():
            dsym = delegate.dsym_for_uuid(crash.images[image_index].uuid)
            if dsym and dsym not in dsym_paths:
                dsym_paths.append(dsym)

        if not dsym_paths:
            self._log("- No dSYMs for any referenced image")
            return []

        task = SymbolicateCrashTask(crash, dsym_paths, locator=self.locator)
        return [(task, partial(self._merge, crash))]

    def _merge(self, crash: Crash, task: SymbolicateCrashTask) -> None:
        if not task.result:
            return
        rewritten = parse(task.result)
        if rewritten is None:
            return

        rewritten_frames = {
            (thread.index, frame.index): frame
            for thread in rewritten.threads
            for frame in thread.frames
        }
        for thread in crash.threads:
            for frame in thread.frames:
                new = rewritten_frames.get((thread.index, frame.index))
                if new is None or new.address != frame.address:
                    continue
                detail = new.detail.strip()
                if detail and detail != frame.detail.strip() \
                        and not UNRESOLVED_SYMBOL_RE.match(detail):
                    frame.symbol = detail


BACKENDS: Dict[CrashType, Type[Symbolicator]] = {
    CrashType.APPLE: AtosSymbolicator,
    CrashType.UMENG: AtosSymbolicator,
}

LEGACY_BACKENDS: Dict[CrashType, Type[Symbolicator]] = {
    CrashType.APPLE: AppleToolSymbolicator,
}


def backend_for(crash_type: Optional[CrashType], legacy: bool = False) -> Optional[Type[Symbolicator]]:
    """Backend class for ``crash_type``; None means the type isn't symbolicated."""
    if crash_type is None:
        return None
    if legacy and crash_type in LEGACY_BACKENDS:
        return LEGACY_BACKENDS[crash_type]
    return BACKENDS.get(crash_type)


class SymbolicationController:
    """Detect, parse and symbolicate report text against a DsymManager."""

    def __init__(self, task_queue: TaskQueue, manager: DsymManager,
                 dispatcher: Optional[Dispatcher] = None, legacy: bool = False,
                 locator: Optional[ToolLocator] = None):
        self.queue = task_queue
        self.manager = manager
        self.dispatcher = dispatcher if dispatcher is not None else QueueDispatcher()
        self.legacy = legacy
        self.locator = locator

    def symbolicate_text(self, text: str,
                         on_finish: Optional[Callable[[Crash], None]] = None,
                         on_progress: Optional[Callable[[bool], None]] = None
                         ) -> Optional[SymbolicationJob]:
        """
        Start symbolicating ``text``.

        Returns:
            The running job, or None when the report can't be read or its
            format isn't symbolicated (no callbacks fire in that case)
        """
        crash_type = detect_type(text)
        if crash_type is None:
            return None

        crash = parse(text)
        if crash is None:
            return None

        backend_cls = backend_for(crash_type, self.legacy)
        if backend_cls is None:
            return None

        if on_progress:
            on_progress(True)

        delegate = RegistryDelegate(self.manager, on_finish=on_finish, on_progress=on_progress)
        backend = backend_cls(self.queue, dispatcher=self.dispatcher, locator=self.locator)
        return backend.symbolicate(crash, delegate)
