"""Crash report format detection and parsing.

Two formats are understood:

- Apple native crash reports (``.crash`` / ``.ips`` text): a header with
  ``Code Type:``, per-thread backtraces and a ``Binary Images:`` section.
- Umeng aggregator exports: a bare backtrace followed by ``dSYM UUID:``,
  ``CPU Type:``, ``Slide Address:``, ``Binary Image:`` and ``Base Address:``
  fields describing the application image.

Parsing is forgiving: lines that don't parse are skipped, and a report with
neither images nor frames yields ``None``.
"""
from __future__ import annotations

import os
import re
from typing import Dict, List, Optional, Tuple

from .core import (
    BinaryImage,
    Crash,
    CrashThread,
    CrashType,
    Frame,
    FRAME_LINE_RE,
    normalize_uuid,
)
from .subprocess_runner import safe_print

VERBOSE = False

# "Thread 0 Crashed:" on iOS, "Thread 0 Crashed:: Dispatch queue: ..." on macOS
THREAD_HEADER_RE = re.compile(r'^Thread\s+(\d+)(\s+Crashed)?\s*::?\s*(.*)$')
THREAD_NAME_RE = re.compile(r'^Thread\s+(\d+)\s+name:\s*(.*)$')
LAST_EXCEPTION_RE = re.compile(r'^Last Exception Backtrace:\s*$')
CODE_TYPE_RE = re.compile(r'^Code Type:\s+([\w\-\.]+)')

# "0x1000e8000 - 0x1001dffff MyApp arm64  <5d4b...> /var/.../MyApp"
# "0x10a0e1000 -        0x10a1b2fff +com.x.App (1.0 - 1) <5D4B-...> /Applications/..."
IMAGE_LINE_RE = re.compile(
    r'^\s*(0x[0-9a-fA-F]+)\s*-\s*(0x[0-9a-fA-F]+)\s+(.*?)\s*<([0-9A-Fa-f\-]+)>\s*(.*?)\s*$'
)

UMENG_FIELD_RE = re.compile(
    r'^\s*(dSYM UUID|CPU Type|Slide Address|Binary Image|Base Address)\s*:\s*(.*?)\s*$'
)

# Code Type values mapped to atos architectures
CODE_TYPE_ARCHS = {
    'ARM-64': 'arm64',
    'ARM64': 'arm64',
    'ARM64E': 'arm64e',
    'ARM': 'armv7',
    'X86-64': 'x86_64',
    'X86_64': 'x86_64',
    'X86': 'i386',
    'PPC': 'ppc',
}


def _log(message: str):
    if VERBOSE:
        safe_print(f"[PARSER] {message}")


def detect_type(text) -> Optional[CrashType]:
    """Return the first format whose signature appears in ``text``."""
    if not isinstance(text, str) or not text.strip():
        return None

    if 'Incident Identifier:' in text:
        return CrashType.APPLE
    if 'Binary Images:' in text and any(
            THREAD_HEADER_RE.match(line.strip()) for line in text.splitlines()):
        return CrashType.APPLE

    if 'dSYM UUID:' in text and ('Slide Address:' in text or 'Binary Image:' in text):
        return CrashType.UMENG

    return None


def parse(text) -> Optional[Crash]:
    """Parse ``text`` into a Crash, or None when it isn't a readable report."""
    crash_type = detect_type(text)
    if crash_type is None:
        return None

    try:
        if crash_type == CrashType.APPLE:
            crash = _parse_apple(text)
        else:
            crash = _parse_umeng(text)
    except Exception as e:
        _log(f"Could not parse report: {type(e).__name__}: {e}")
        return None

    if not crash.images and not crash.all_frames():
        return None
    return crash


def arch_from_code_type(code_type: str) -> Optional[str]:
    return CODE_TYPE_ARCHS.get(code_type.upper())


def _parse_hex(value: str) -> Optional[int]:
    try:
        return int(value, 16)
    except (TypeError, ValueError):
        return None


def _parse_frame(line: str, line_number: int) -> Optional[Frame]:
    match = FRAME_LINE_RE.match(line)
    if not match:
        return None
    address = _parse_hex(match.group('address'))
    if address is None:
        return None
    return Frame(
        index=int(match.group('index')),
        image_name=match.group('image').strip(),
        address=address,
        detail=match.group('detail'),
        line_number=line_number,
    )


def _parse_image(line: str, default_arch: Optional[str]) -> Optional[BinaryImage]:
    match = IMAGE_LINE_RE.match(line)
    if not match:
        return None

    low = _parse_hex(match.group(1))
    high = _parse_hex(match.group(2))
    if low is None or high is None:
        return None

    identifier_parts = match.group(3).split()
    if not identifier_parts:
        return None
    name = identifier_parts[0].lstrip('+')
    arch = default_arch
    if len(identifier_parts) > 1 and not identifier_parts[1].startswith('('):
        arch = identifier_parts[1]

    return BinaryImage(
        uuid=normalize_uuid(match.group(4)),
        load_address=low,
        end_address=high,
        name=name,
        path=match.group(5),
        arch=arch,
    )


def associate_frames(crash: Crash) -> None:
    """Point each frame at the image whose range, or failing that name, matches."""
    by_name: Dict[str, int] = {}
    for i, image in enumerate(crash.images):
        by_name.setdefault(image.name, i)
        if image.path:
            by_name.setdefault(os.path.basename(image.path), i)

    for frame in crash.all_frames():
        frame.image_index = None
        for i, image in enumerate(crash.images):
            if image.contains(frame.address):
                frame.image_index = i
                break
        if frame.image_index is None:
            frame.image_index = by_name.get(frame.image_name)


def _parse_apple(text: str) -> Crash:
    lines = text.splitlines()
    crash = Crash(crash_type=CrashType.APPLE, raw_lines=lines)

    thread_names: Dict[int, str] = {}
    current: Optional[CrashThread] = None
    in_images = False

    for line_number, line in enumerate(lines):
        stripped = line.strip()

        if in_images:
            if not stripped:
                in_images = False
                continue
            image = _parse_image(line, crash.arch)
            if image:
                crash.images.append(image)
            continue

        if stripped == 'Binary Images:':
            in_images = True
            current = None
            continue

        code_type = CODE_TYPE_RE.match(stripped)
        if code_type and crash.arch is None:
            crash.arch = arch_from_code_type(code_type.group(1))
            continue

        name_match = THREAD_NAME_RE.match(stripped)
        if name_match:
            thread_names[int(name_match.group(1))] = name_match.group(2).strip()
            continue

        header = THREAD_HEADER_RE.match(stripped)
        if header:
            index = int(header.group(1))
            current = CrashThread(
                index=index,
                name=thread_names.get(index) or header.group(3).strip() or None,
                crashed=bool(header.group(2)),
            )
            crash.threads.append(current)
            continue

        if LAST_EXCEPTION_RE.match(stripped):
            current = CrashThread(index=-1, name='Last Exception Backtrace', crashed=True)
            crash.threads.append(current)
            continue

        if current is None:
            continue
        if not stripped:
            current = None
            continue

        frame = _parse_frame(line, line_number)
        if frame:
            current.frames.append(frame)
        else:
            _log(f"Skipping unparseable frame line {line_number + 1}")

    crash.threads = [t for t in crash.threads if t.frames]
    associate_frames(crash)
    return crash


def _umeng_fields(lines: List[str]) -> Tuple[Dict[str, str], List[int]]:
    fields: Dict[str, str] = {}
    field_lines = []
    for line_number, line in enumerate(lines):
        match = UMENG_FIELD_RE.match(line)
        if match:
            fields.setdefault(match.group(1), match.group(2))
            field_lines.append(line_number)
    return fields, field_lines


def _parse_umeng(text: str) -> Crash:
    lines = text.splitlines()
    crash = Crash(crash_type=CrashType.UMENG, raw_lines=lines)

    fields, field_lines = _umeng_fields(lines)
    skip = set(field_lines)

    cpu_type = fields.get('CPU Type')
    if cpu_type:
        crash.arch = arch_from_code_type(cpu_type) or cpu_type.lower()

    uuid = fields.get('dSYM UUID')
    name = fields.get('Binary Image')
    load_address = _parse_hex(fields.get('Base Address', ''))
    if load_address is None:
        load_address = _parse_hex(fields.get('Slide Address', ''))
    if uuid and name and load_address is not None:
        crash.images.append(BinaryImage(
            uuid=normalize_uuid(uuid),
            load_address=load_address,
            name=name,
            arch=crash.arch,
        ))

    thread = CrashThread(index=0, crashed=True)
    for line_number, line in enumerate(lines):
        if line_number in skip:
            continue
        frame = _parse_frame(line, line_number)
        if frame:
            thread.frames.append(frame)
    if thread.frames:
        crash.threads.append(thread)

    associate_frames(crash)
    return crash
