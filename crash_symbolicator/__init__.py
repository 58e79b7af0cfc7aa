"""Crash Symbolicator package.

This package turns raw iOS/macOS crash reports into symbolicated ones:
- Format detection for Apple native reports and Umeng aggregator exports
- Parsing into a typed Crash model (binary images, threads, frames)
- A UUID-indexed registry of dSYM archives
- atos / symbolicatecrash backends running on a bounded task queue
"""
from .core import (
    BinaryImage,
    Crash,
    CrashThread,
    CrashType,
    Frame,
    normalize_uuid,
)
from .parser import detect_type, parse
from .dsym_manager import DsymManager, SymbolArchive
from .subprocess_runner import SubProcess, SubprocessResult, ToolLocator
from .task_queue import FunctionTask, Task, TaskQueue
from .symbolicator import (
    AppleToolSymbolicator,
    AtosSymbolicator,
    BACKENDS,
    InlineDispatcher,
    QueueDispatcher,
    RegistryDelegate,
    SymbolicationController,
    SymbolicationJob,
    SymbolicationState,
    Symbolicator,
    SymbolicatorDelegate,
    backend_for,
)

# Qt dispatcher (optional - only needed by GUI hosts)
try:
    from .qt_bridge import QtMainThreadDispatcher
    HAS_QT = True
except ImportError:
    QtMainThreadDispatcher = None
    HAS_QT = False

__all__ = [
    # Model
    "BinaryImage",
    "Crash",
    "CrashThread",
    "CrashType",
    "Frame",
    "normalize_uuid",
    # Parsing
    "detect_type",
    "parse",
    # Registry
    "DsymManager",
    "SymbolArchive",
    # Tools and queue
    "SubProcess",
    "SubprocessResult",
    "ToolLocator",
    "FunctionTask",
    "Task",
    "TaskQueue",
    # Symbolication
    "AppleToolSymbolicator",
    "AtosSymbolicator",
    "BACKENDS",
    "InlineDispatcher",
    "QueueDispatcher",
    "RegistryDelegate",
    "SymbolicationController",
    "SymbolicationJob",
    "SymbolicationState",
    "Symbolicator",
    "SymbolicatorDelegate",
    "backend_for",
    "QtMainThreadDispatcher",
    "HAS_QT",
]

__version__ = "1.0.0"
