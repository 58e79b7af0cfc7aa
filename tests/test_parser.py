"""Tests for crash report format detection and parsing."""
from crash_symbolicator.core import Crash, CrashType, normalize_uuid
from crash_symbolicator.parser import detect_type, parse

from conftest import APPLE_REPORT, APP_UUID, UIKIT_UUID, UMENG_REPORT


def test_detect_apple(apple_report):
    assert detect_type(apple_report) == CrashType.APPLE


def test_detect_umeng(umeng_report):
    assert detect_type(umeng_report) == CrashType.UMENG


def test_detect_apple_without_incident_identifier():
    """Binary Images plus a thread header is enough for the Apple format."""
    text = APPLE_REPORT.replace("Incident Identifier: 6156848E-344E-4D9E-84E0-87AFD0D0AE7B\n", "")
    assert detect_type(text) == CrashType.APPLE


def test_detect_unknown():
    assert detect_type("hello world\nnothing to see here") is None
    assert detect_type("") is None
    assert detect_type("   \n\t  ") is None
    assert detect_type(None) is None
    assert detect_type(b"Incident Identifier:") is None


def test_detect_is_deterministic(apple_report, umeng_report):
    for text in (apple_report, umeng_report, "garbage"):
        assert len({detect_type(text) for _ in range(5)}) == 1


def test_parse_apple_images(apple_report):
    crash = parse(apple_report)
    assert isinstance(crash, Crash)
    assert crash.crash_type == CrashType.APPLE
    assert crash.arch == "arm64"
    assert [i.name for i in crash.images] == [
        "TouchCanvas", "libdyld.dylib", "libsystem_pthread.dylib", "UIKitCore",
    ]
    app = crash.images[0]
    assert app.uuid == APP_UUID
    assert app.load_address == 0x102af4000
    assert app.end_address == 0x102b03fff
    assert app.arch == "arm64"
    assert app.path.endswith("TouchCanvas.app/TouchCanvas")
    assert crash.images[3].uuid == UIKIT_UUID


def test_parse_apple_threads(apple_report):
    crash = parse(apple_report)
    assert len(crash.threads) == 2

    main = crash.threads[0]
    assert main.index == 0
    assert main.crashed
    assert main.name == "Dispatch queue: com.apple.main-thread"
    assert [f.index for f in main.frames] == [0, 1, 2, 3, 4]
    assert main.frames[0].address == 0x102afb3d0
    assert main.frames[0].detail == "0x102af4000 + 29648"

    assert not crash.threads[1].crashed
    assert len(crash.threads[1].frames) == 1


def test_parse_apple_frame_image_references(apple_report):
    crash = parse(apple_report)
    names = [crash.image_for_frame(f).name for f in crash.all_frames()]
    assert names == [
        "TouchCanvas", "TouchCanvas", "UIKitCore", "TouchCanvas",
        "libdyld.dylib", "libsystem_pthread.dylib",
    ]
    assert crash.referenced_image_indexes() == [0, 1, 2, 3]


def test_parse_apple_register_lines_are_not_frames(apple_report):
    crash = parse(apple_report)
    assert len(crash.all_frames()) == 6


def test_unparseable_frame_line_is_dropped():
    text = APPLE_REPORT.replace(
        "4   libdyld.dylib",
        "garbage frame line without an address\n4   libdyld.dylib",
    )
    crash = parse(text)
    assert crash is not None
    assert len(crash.all_frames()) == 6


def test_frame_without_image_stays_unresolved():
    text = APPLE_REPORT.replace(
        "\nThread 1:",
        "5   Mystery                       \t0x00000000deadbeef 0xdead0000 + 48879\n\nThread 1:",
    )
    crash = parse(text)
    mystery = crash.threads[0].frames[-1]
    assert mystery.image_name == "Mystery"
    assert mystery.image_index is None
    assert crash.image_for_frame(mystery) is None


def test_frame_associated_by_name_when_outside_every_range():
    text = APPLE_REPORT.replace(
        "\nThread 1:",
        "5   UIKitCore                     \t0x00000000deadbeef 0xdead0000 + 48879\n\nThread 1:",
    )
    crash = parse(text)
    assert crash.image_for_frame(crash.threads[0].frames[-1]).name == "UIKitCore"


MACOS_REPORT = """Process:               App [4242]
Code Type:             X86-64 (Native)

Thread 0 Crashed:: Dispatch queue: com.apple.main-thread
0   com.example.App               \t0x000000010a0e2f00 0x10a0e1000 + 7936
1   com.example.App               \t0x000000010a0e3010 0x10a0e1000 + 8208

Thread 1:: com.apple.NSURLConnectionLoader
0   com.example.App               \t0x000000010a0e4000 0x10a0e1000 + 12288

Binary Images:
       0x10a0e1000 -        0x10a1b2fff +com.example.App (1.0 - 1) <5D4B7F3C-3B2E-3C1D-9C0D-5E1A2B3C4D5E> /Applications/App.app/Contents/MacOS/App
"""


def test_detect_macos_report():
    assert detect_type(MACOS_REPORT) == CrashType.APPLE


def test_parse_macos_report():
    crash = parse(MACOS_REPORT)
    assert crash is not None
    image = crash.images[0]
    assert image.name == "com.example.App"
    assert image.arch == "x86_64"
    assert image.uuid == "5D4B7F3C-3B2E-3C1D-9C0D-5E1A2B3C4D5E"

    assert [t.index for t in crash.threads] == [0, 1]
    main, loader = crash.threads
    assert main.crashed
    assert main.name == "Dispatch queue: com.apple.main-thread"
    assert [f.address for f in main.frames] == [0x10a0e2f00, 0x10a0e3010]
    assert not loader.crashed
    assert loader.name == "com.apple.NSURLConnectionLoader"
    assert len(loader.frames) == 1
    assert all(f.image_index == 0 for f in crash.all_frames())


def test_parse_umeng(umeng_report):
    crash = parse(umeng_report)
    assert crash.crash_type == CrashType.UMENG
    assert crash.arch == "arm64"
    assert len(crash.images) == 1

    image = crash.images[0]
    assert image.uuid == APP_UUID
    assert image.name == "TouchCanvas"
    assert image.load_address == 0x1000e8000

    frames = crash.all_frames()
    assert len(frames) == 5
    assert [f.image_index for f in frames] == [None, None, 0, 0, None]


def test_parse_umeng_falls_back_to_slide_address():
    text = UMENG_REPORT.replace("Base Address: 0x00000001000e8000\n", "")
    crash = parse(text)
    assert crash.images[0].load_address == 0x100000000


def test_parse_umeng_zero_base_address_is_kept():
    text = UMENG_REPORT.replace("Base Address: 0x00000001000e8000", "Base Address: 0x0")
    crash = parse(text)
    assert crash.images[0].load_address == 0


def test_parse_never_raises():
    inputs = [
        "",
        "    \n\n\t",
        "\x00\xff\xfe binary \x01\x02 junk",
        APPLE_REPORT[:len(APPLE_REPORT) // 2],
        APPLE_REPORT[:40],
        UMENG_REPORT[-60:],
        "Incident Identifier:\nThread 0 Crashed:\n0 x 0xZZ\nBinary Images:\n0x1 - 0x0 <>",
        None,
        12345,
        ["Incident Identifier:"],
    ]
    for text in inputs:
        result = parse(text)
        assert result is None or isinstance(result, Crash)


def test_structurally_empty_report_is_none():
    assert parse("Incident Identifier: 1234\nProcess: Foo [1]\n") is None
    assert parse("dSYM UUID: \nSlide Address: \n") is None


def test_round_trip_synthetic_report():
    """N declared images and M frames survive parsing with intact references."""
    image_count = 6
    frames_per_image = 3
    image_lines = []
    frame_lines = []
    expected = []
    frame_no = 0
    for i in range(image_count):
        base = 0x100000000 + i * 0x100000
        uuid = f"{i:02x}" * 16
        image_lines.append(
            f"0x{base:x} - 0x{base + 0xfffff:x} Lib{i} arm64  <{uuid}> /usr/lib/Lib{i}.dylib"
        )
        for j in range(frames_per_image):
            address = base + 0x100 * (j + 1)
            frame_lines.append(f"{frame_no:<4}Lib{i:<28}\t0x{address:016x} 0x{base:x} + {0x100 * (j + 1)}")
            expected.append((address, f"Lib{i}", normalize_uuid(uuid)))
            frame_no += 1

    text = "\n".join(
        ["Incident Identifier: 0000", "Code Type: ARM-64 (Native)", "", "Thread 0 Crashed:"]
        + frame_lines + ["", "Binary Images:"] + image_lines + [""]
    )
    crash = parse(text)

    assert len(crash.images) == image_count
    frames = crash.all_frames()
    assert len(frames) == image_count * frames_per_image
    for frame, (address, name, uuid) in zip(frames, expected):
        image = crash.image_for_frame(frame)
        assert frame.address == address
        assert image.name == name
        assert image.uuid == uuid


def test_pretty_replaces_resolved_frames(apple_report):
    crash = parse(apple_report)
    crash.threads[0].frames[0].symbol = "-[CanvasView drawTouches:] (CanvasView.swift:42)"

    lines = crash.pretty().split("\n")
    line = lines[crash.threads[0].frames[0].line_number]
    assert line.endswith("0x0000000102afb3d0 -[CanvasView drawTouches:] (CanvasView.swift:42)")
    assert line.startswith("0   TouchCanvas")
    # Unresolved frames are untouched
    assert "0x102af4000 + 29648" in lines[crash.threads[0].frames[1].line_number]
    assert crash.pretty().count("\n") == len(crash.raw_lines) - 1


def test_normalize_uuid():
    assert normalize_uuid("fe7a5b2b1b5e3a5e86ed8e5ab5cd7ec8") == APP_UUID
    assert normalize_uuid("<fe7a5b2b1b5e3a5e86ed8e5ab5cd7ec8>") == APP_UUID
    assert normalize_uuid(APP_UUID.lower()) == APP_UUID
    assert normalize_uuid("abc") == "ABC"
