"""
Subprocess Runner Module - Runs the Xcode command line tools
Part of Crash Symbolicator

Handles:
- Tool detection and location (xcrun/atos, dwarfdump, symbolicatecrash)
- Launching a tool and capturing its standard output
- Narrow parsing of each tool's output
"""

import os
import shutil
import subprocess
import sys
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from .task_queue import Task


def safe_print(msg: str):
    """Print message safely, handling unicode encoding issues on odd consoles."""
    try:
        print(msg)
    except UnicodeEncodeError:
        encoding = sys.stdout.encoding or 'utf-8'
        print(msg.encode(encoding, errors='replace').decode(encoding, errors='replace'))


@dataclass
class SubprocessResult:
    """Captured output of one tool invocation"""
    output: Optional[str] = None
    returncode: Optional[int] = None
    error_message: Optional[str] = None

    @property
    def success(self) -> bool:
        return bool(self.output)


class ToolLocator:
    """Finds the external tools used for symbolication"""

    XCRUN_PATHS = [
        "/usr/bin/xcrun",
    ]

    DWARFDUMP_PATHS = [
        "/usr/bin/dwarfdump",
        "/Applications/Xcode.app/Contents/Developer/Toolchains/XcodeDefault.xctoolchain/usr/bin/dwarfdump",
        "/usr/local/opt/llvm/bin/llvm-dwarfdump",
        "/opt/homebrew/opt/llvm/bin/llvm-dwarfdump",
    ]

    SYMBOLICATECRASH_PATHS = [
        "/Applications/Xcode.app/Contents/SharedFrameworks/DVTFoundation.framework/Versions/A/Resources/symbolicatecrash",
        "/Applications/Xcode.app/Contents/SharedFrameworks/DTDeviceKitBase.framework/Versions/A/Resources/symbolicatecrash",
    ]

    ENV_OVERRIDES = {
        "xcrun": "CRASH_SYM_XCRUN",
        "dwarfdump": "CRASH_SYM_DWARFDUMP",
        "symbolicatecrash": "CRASH_SYM_SYMBOLICATECRASH",
    }

    def __init__(self):
        self._cache: Dict[str, str] = {}

    def find(self, tool: str) -> str:
        """Return the path of ``tool``; falls back to the bare name so launch fails softly"""
        if tool in self._cache:
            return self._cache[tool]

        path = self._find(tool)
        self._cache[tool] = path
        return path

    def _find(self, tool: str) -> str:
        env_name = self.ENV_OVERRIDES.get(tool)
        if env_name and os.environ.get(env_name):
            return os.environ[env_name]

        candidates = {
            "xcrun": self.XCRUN_PATHS,
            "dwarfdump": self.DWARFDUMP_PATHS,
            "symbolicatecrash": self.SYMBOLICATECRASH_PATHS,
        }.get(tool, [])
        for path in candidates:
            if os.path.exists(path):
                return path

        found = shutil.which(tool)
        if found:
            return found

        return tool


# Shared locator; tool paths don't change during a run
default_locator = ToolLocator()


def _timeout_from_env() -> Optional[float]:
    value = os.environ.get("CRASH_SYM_TIMEOUT")
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class SubProcess(Task):
    """Launches one external tool and captures its standard output"""

    VERBOSE = False

    def __init__(self, cmd: str, arguments: Optional[Sequence[str]] = None,
                 env: Optional[Dict[str, str]] = None, timeout: Optional[float] = None):
        super().__init__(name=os.path.basename(cmd))
        self.cmd = cmd
        self.arguments = list(arguments or [])
        self.env = env
        self.timeout = timeout if timeout is not None else _timeout_from_env()
        self.result: Optional[str] = None
        self.process_result: Optional[SubprocessResult] = None

    def _log(self, message: str):
        if SubProcess.VERBOSE:
            safe_print(f"[{self.name.upper()}] {message}")

    def main(self) -> Optional[str]:
        if self.is_cancelled:
            return None

        command = [self.cmd] + self.arguments
        self._log(f"Running: {' '.join(command)[:200]}")

        env = None
        if self.env:
            env = dict(os.environ)
            env.update(self.env)

        try:
            completed = subprocess.run(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
                text=True,
                encoding='utf-8',
                errors='replace',
                env=env,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            # subprocess.run kills and reaps the child before raising
            self.process_result = SubprocessResult(
                error_message=f"{self.name} timed out after {self.timeout} seconds"
            )
            self._log(self.process_result.error_message)
            return None
        except (OSError, ValueError) as e:
            self.process_result = SubprocessResult(
                error_message=f"Could not launch {self.cmd}: {e}"
            )
            self._log(self.process_result.error_message)
            return None

        output = completed.stdout
        self.process_result = SubprocessResult(output=output, returncode=completed.returncode)
        self.result = output
        self._log(f"Exit code {completed.returncode}, {len(output or '')} chars of output")
        return output


# atos

def atos(load_address: str, addresses: Sequence[str], dsym: str,
         arch: str = "x86_64", locator: Optional[ToolLocator] = None) -> SubProcess:
    """Build an atos invocation resolving ``addresses`` against ``dsym``"""
    locator = locator or default_locator
    arguments = ["atos", "-arch", arch, "-o", dsym, "-l", load_address] + list(addresses)
    return SubProcess(locator.find("xcrun"), arguments)


def atos_result(process: SubProcess) -> Optional[List[str]]:
    """One symbol line per address, in input order"""
    if process.result is None:
        return None

    return [line for line in process.result.split("\n") if line.strip()]


# dwarfdump

UUID_MARKER = "UUID: "


def dwarfdump(dsym_path: str, locator: Optional[ToolLocator] = None) -> SubProcess:
    """Build a dwarfdump invocation listing the UUIDs inside ``dsym_path``"""
    locator = locator or default_locator
    return SubProcess(locator.find("dwarfdump"), ["--uuid", dsym_path])


def dwarf_result(process: SubProcess) -> Optional[List[str]]:
    """UUID tokens from lines like 'UUID: 5D4B... (arm64) /path'"""
    if process.result is None:
        return None

    uuids = []
    for line in process.result.split("\n"):
        if not line.startswith(UUID_MARKER):
            continue
        parts = line[len(UUID_MARKER):].split()
        if parts:
            uuids.append(parts[0])
    return uuids


# symbolicatecrash

def symbolicatecrash(crash_path: str, dsym_paths: Sequence[str] = (),
                     locator: Optional[ToolLocator] = None) -> SubProcess:
    """Build a legacy whole-report symbolicatecrash invocation"""
    locator = locator or default_locator
    arguments = []
    for dsym in dsym_paths:
        arguments += ["-d", dsym]
    arguments.append(crash_path)

    env = None
    if os.environ.get("DEVELOPER_DIR"):
        env = {"DEVELOPER_DIR": os.environ["DEVELOPER_DIR"]}
    return SubProcess(locator.find("symbolicatecrash"), arguments, env=env)
