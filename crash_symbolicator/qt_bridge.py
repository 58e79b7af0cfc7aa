"""Qt glue: deliver symbolication callbacks on the Qt main thread."""
from typing import Callable

from PySide6 import QtCore
from PySide6.QtCore import Qt, Signal


class QtMainThreadDispatcher(QtCore.QObject):
    """Dispatcher that runs callbacks in the thread this object lives in.

    Create it on the GUI thread and pass it as ``dispatcher`` to a
    Symbolicator or SymbolicationController. Callbacks emitted from pool
    workers are queued onto the GUI event loop.
    """

    invoke = Signal(object)

    def __init__(self, parent=None):
        super().__init__(parent)
        self.invoke.connect(self._run, Qt.QueuedConnection)

    def __call__(self, callback: Callable[[], None]) -> None:
        self.invoke.emit(callback)

    @QtCore.Slot(object)
    def _run(self, callback):
        callback()
