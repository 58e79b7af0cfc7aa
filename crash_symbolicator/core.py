"""Crash data model for Crash Symbolicator.

A ``Crash`` is created by the parser from one report text, filled in place by
a symbolicator and rendered back to text with ``Crash.pretty()``.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


class CrashType(Enum):
    """Supported crash report formats."""
    APPLE = "apple"
    UMENG = "umeng"


def normalize_uuid(uuid: str) -> str:
    """Takes a plain or hyphenated hex UUID, uppercases it and inserts hyphens."""
    value = uuid.strip().strip('<>').replace('-', '').upper()
    if len(value) != 32:
        return uuid.strip().strip('<>').upper()
    return '-'.join([value[0:8], value[8:12], value[12:16], value[16:20], value[20:]])


@dataclass
class BinaryImage:
    """One loaded module of the crashed process."""
    uuid: str
    load_address: int
    name: str
    path: str = ""
    end_address: Optional[int] = None
    arch: Optional[str] = None

    def contains(self, address: int) -> bool:
        if self.end_address is None:
            return False
        return self.load_address <= address <= self.end_address

    @property
    def load_address_hex(self) -> str:
        return f"0x{self.load_address:x}"


@dataclass
class Frame:
    """One stack entry."""
    index: int
    image_name: str
    address: int
    image_index: Optional[int] = None
    symbol: Optional[str] = None
    detail: str = ""  # Trailing text after the address, as written
    line_number: Optional[int] = None  # Line in Crash.raw_lines

    @property
    def address_hex(self) -> str:
        return f"0x{self.address:016x}"

    @property
    def is_resolved(self) -> bool:
        return bool(self.symbol)


@dataclass
class CrashThread:
    """An ordered list of frames."""
    index: int
    name: Optional[str] = None
    crashed: bool = False
    frames: List[Frame] = field(default_factory=list)


# "0   MyApp   0x00000001000f1234 0x1000e8000 + 37428"
FRAME_LINE_RE = re.compile(
    r'^(?P<prefix>\s*(?P<index>\d+)\s+(?P<image>.+?)\s+)'
    r'(?P<address>0x[0-9a-fA-F]+)(?P<gap>\s*)(?P<detail>.*?)\s*$'
)


@dataclass
class Crash:
    """Parsed crash report."""
    crash_type: CrashType
    images: List[BinaryImage] = field(default_factory=list)
    threads: List[CrashThread] = field(default_factory=list)
    arch: Optional[str] = None
    raw_lines: List[str] = field(default_factory=list)

    def all_frames(self) -> List[Frame]:
        return [frame for thread in self.threads for frame in thread.frames]

    def image_for_frame(self, frame: Frame) -> Optional[BinaryImage]:
        if frame.image_index is None:
            return None
        if 0 <= frame.image_index < len(self.images):
            return self.images[frame.image_index]
        return None

    def frames_for_image(self, image_index: int) -> List[Frame]:
        return [f for f in self.all_frames() if f.image_index == image_index]

    def referenced_image_indexes(self) -> List[int]:
        """Indexes of images referenced by at least one frame, in image order."""
        used = {f.image_index for f in self.all_frames() if f.image_index is not None}
        return sorted(i for i in used if 0 <= i < len(self.images))

    @property
    def resolved_count(self) -> int:
        return sum(1 for f in self.all_frames() if f.is_resolved)

    def pretty(self) -> str:
        """Report text with every resolved frame's detail replaced by its symbol."""
        lines = list(self.raw_lines)
        for frame in self.all_frames():
            if not frame.is_resolved or frame.line_number is None:
                continue
            if not 0 <= frame.line_number < len(lines):
                continue
            match = FRAME_LINE_RE.match(lines[frame.line_number])
            if not match:
                continue
            lines[frame.line_number] = (
                f"{match.group('prefix')}{match.group('address')}{match.group('gap') or ' '}{frame.symbol}"
            )
        return "\n".join(lines)

    def summary(self) -> Dict[str, int]:
        frames = self.all_frames()
        return {
            'images': len(self.images),
            'threads': len(self.threads),
            'frames': len(frames),
            'resolved': sum(1 for f in frames if f.is_resolved),
        }
