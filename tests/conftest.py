import os
import subprocess
import sys

import pytest

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from crash_symbolicator.task_queue import TaskQueue


APPLE_REPORT = """Incident Identifier: 6156848E-344E-4D9E-84E0-87AFD0D0AE7B
CrashReporter Key:   76f2fb60060d6a7f814973377cbdc866fffd521f
Hardware Model:      iPhone8,1
Process:             TouchCanvas [1052]
Path:                /private/var/containers/Bundle/Application/51346174-37EF-4F60-B72D-8DE5F01035F5/TouchCanvas.app/TouchCanvas
Identifier:          com.example.apple-samplecode.TouchCanvas
Version:             1 (3.0)
Code Type:           ARM-64 (Native)
Role:                Foreground
Parent Process:      launchd [1]

Date/Time:           2020-03-27 18:06:51.4969 -0700
OS Version:          iPhone OS 13.3.1 (17D50)
Report Version:      104

Exception Type:  EXC_BREAKPOINT (SIGTRAP)
Triggered by Thread:  0

Thread 0 name:  Dispatch queue: com.apple.main-thread
Thread 0 Crashed:
0   TouchCanvas                   \t0x0000000102afb3d0 0x102af4000 + 29648
1   TouchCanvas                   \t0x0000000102afb3d0 0x102af4000 + 29648
2   UIKitCore                     \t0x00000001b48c0f44 0x1b4800000 + 790340
3   TouchCanvas                   \t0x0000000102af7d10 0x102af4000 + 15632
4   libdyld.dylib                 \t0x000000018b8f2360 0x18b8f1000 + 4960

Thread 1:
0   libsystem_pthread.dylib       \t0x000000018b90f0b8 0x18b90e000 + 4280

Thread 0 crashed with ARM Thread State (64-bit):
    x0: 0x0000000000000001   x1: 0x0000000000000000

Binary Images:
0x102af4000 - 0x102b03fff TouchCanvas arm64  <fe7a5b2b1b5e3a5e86ed8e5ab5cd7ec8> /var/containers/Bundle/Application/51346174-37EF-4F60-B72D-8DE5F01035F5/TouchCanvas.app/TouchCanvas
0x18b8f1000 - 0x18b8f6fff libdyld.dylib arm64  <7f2d6c4a5b0c3a7a9f0d2e1c3b4a5968> /usr/lib/system/libdyld.dylib
0x18b90e000 - 0x18b91bfff libsystem_pthread.dylib arm64  <1a2b3c4d5e6f708192a3b4c5d6e7f809> /usr/lib/system/libsystem_pthread.dylib
0x1b4800000 - 0x1b5afffff UIKitCore arm64  <0123456789abcdef0123456789abcdef> /System/Library/PrivateFrameworks/UIKitCore.framework/UIKitCore
"""

APP_UUID = "FE7A5B2B-1B5E-3A5E-86ED-8E5AB5CD7EC8"
UIKIT_UUID = "01234567-89AB-CDEF-0123-456789ABCDEF"

UMENG_REPORT = """Application received signal SIGSEGV
(null)
(
0   CoreFoundation                      0x0000000183ba2d8c <redacted> + 148
1   libobjc.A.dylib                     0x0000000182d5c5ec objc_exception_throw + 56
2   TouchCanvas                         0x00000001000f1234 TouchCanvas + 37428
3   TouchCanvas                         0x00000001000f0a10 TouchCanvas + 35344
4   libdyld.dylib                       0x00000001832d156c <redacted> + 4
)

dSYM UUID: FE7A5B2B-1B5E-3A5E-86ED-8E5AB5CD7EC8
CPU Type: arm64
Slide Address: 0x0000000100000000
Binary Image: TouchCanvas
Base Address: 0x00000001000e8000
"""


@pytest.fixture
def apple_report():
    return APPLE_REPORT


@pytest.fixture
def umeng_report():
    return UMENG_REPORT


@pytest.fixture
def task_queue():
    queue = TaskQueue()
    yield queue
    queue.cancel_all()
    queue.shutdown(wait=True)


def completed(command, stdout=""):
    """CompletedProcess the way subprocess.run returns it with text=True."""
    return subprocess.CompletedProcess(command, 0, stdout=stdout)
