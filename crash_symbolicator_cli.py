#!/usr/bin/env python3
"""
Crash Symbolicator - Main Entry Point

Command line front end for the symbolication engine.
"""

import os
import sys
import argparse
import json
from pathlib import Path

# Load .env before any crash_symbolicator imports (so CRASH_SYM_* tool paths are set)
from dotenv import load_dotenv
load_dotenv()

# Add crash_symbolicator to path
sys.path.insert(0, str(Path(__file__).parent))


def _read_report(path):
    with open(path, 'r', encoding='utf-8', errors='replace') as f:
        return f.read()


def _set_verbose(enabled):
    from crash_symbolicator import parser as crash_parser
    from crash_symbolicator.dsym_manager import DsymManager
    from crash_symbolicator.subprocess_runner import SubProcess
    from crash_symbolicator.symbolicator import Symbolicator
    from crash_symbolicator.task_queue import Task

    crash_parser.VERBOSE = enabled
    DsymManager.VERBOSE = enabled
    SubProcess.VERBOSE = enabled
    Symbolicator.VERBOSE = enabled
    Task.VERBOSE = enabled


def _crash_to_dict(crash):
    return {
        'type': crash.crash_type.value,
        'arch': crash.arch,
        'images': [
            {
                'name': image.name,
                'uuid': image.uuid,
                'load_address': image.load_address_hex,
                'path': image.path,
                'arch': image.arch,
            }
            for image in crash.images
        ],
        'threads': [
            {
                'index': thread.index,
                'name': thread.name,
                'crashed': thread.crashed,
                'frames': [
                    {
                        'index': frame.index,
                        'image': frame.image_name,
                        'address': frame.address_hex,
                        'image_index': frame.image_index,
                        'symbol': frame.symbol,
                    }
                    for frame in thread.frames
                ],
            }
            for thread in crash.threads
        ],
    }


def _write_output(text, output):
    if output:
        with open(output, 'w', encoding='utf-8') as f:
            f.write(text)
        print(f"\n[OK] Results saved to: {output}")
    else:
        print(text)


def main(argv=None):
    parser = argparse.ArgumentParser(
        description='Crash Symbolicator - Resolve iOS/macOS crash report addresses with dSYMs',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Show which format a report is in
  %(prog)s detect MyApp.crash

  # Dump the parsed structure as JSON
  %(prog)s parse MyApp.crash

  # Check which UUIDs a dSYM covers
  %(prog)s import MyApp.app.dSYM

  # Symbolicate using every dSYM under a directory
  %(prog)s symbolicate MyApp.crash --dsym-dir ~/Archives -o MyApp.symbolicated.crash
        """
    )

    parser.add_argument(
        'command',
        choices=['detect', 'parse', 'import', 'symbolicate', 'test'],
        help='Command to execute'
    )

    parser.add_argument(
        'path',
        nargs='?',
        help='Crash report (detect/parse/symbolicate) or dSYM (import)'
    )

    parser.add_argument(
        '--dsym',
        action='append',
        default=[],
        help='dSYM bundle to import before symbolicating (repeatable)'
    )

    parser.add_argument(
        '--dsym-dir',
        default=os.environ.get('CRASH_SYM_DSYM_DIR'),
        help='Directory searched for *.dSYM bundles (default: $CRASH_SYM_DSYM_DIR)'
    )

    parser.add_argument(
        '--legacy',
        action='store_true',
        help='Use symbolicatecrash instead of atos for Apple reports'
    )

    parser.add_argument(
        '--timeout',
        type=float,
        default=300.0,
        help='Seconds to wait for symbolication to finish (default: 300)'
    )

    parser.add_argument(
        '--output',
        '-o',
        help='Output file for results (default: console)'
    )

    parser.add_argument(
        '--verbose',
        '-v',
        action='store_true',
        default=os.environ.get('CRASH_SYM_VERBOSE') == '1',
        help='Print tool invocations and registry activity'
    )

    args = parser.parse_args(argv)
    _set_verbose(args.verbose)

    if args.command == 'test':
        print("Running test suite...")
        import pytest
        return pytest.main(['tests/', '-v'])

    if not args.path:
        parser.error(f"{args.command} command requires a path argument")

    if not os.path.exists(args.path):
        print(f"Error: File not found: {args.path}")
        return 1

    from crash_symbolicator import (
        DsymManager,
        QueueDispatcher,
        SymbolicationController,
        TaskQueue,
        detect_type,
        parse,
    )

    if args.command == 'detect':
        crash_type = detect_type(_read_report(args.path))
        if crash_type is None:
            print("Unknown format - cannot read this report")
            return 1
        print(crash_type.value)
        return 0

    if args.command == 'parse':
        crash = parse(_read_report(args.path))
        if crash is None:
            print("Unknown format - cannot read this report")
            return 1
        _write_output(json.dumps(_crash_to_dict(crash), indent=2), args.output)
        return 0

    manager = DsymManager()

    if args.command == 'import':
        uuids, success = manager.import_dsym(args.path)
        if not success:
            print(f"This is not a dSYM file: {args.path}")
            return 1
        print(f"[+] Imported {os.path.basename(args.path)}")
        for uuid in uuids:
            print(f"  - {uuid}")
        return 0

    # symbolicate
    text = _read_report(args.path)
    task_queue = TaskQueue()
    try:
        for dsym in args.dsym:
            uuids, success = manager.import_dsym(dsym)
            if not success:
                print(f"[-] Skipping {dsym}: not a dSYM file")
        if args.dsym_dir:
            registered = manager.import_directory(args.dsym_dir, task_queue)
            print(f"[*] {len(registered)} UUIDs indexed from {args.dsym_dir}")

        dispatcher = QueueDispatcher()
        controller = SymbolicationController(
            task_queue, manager, dispatcher=dispatcher, legacy=args.legacy
        )
        finished = []
        job = controller.symbolicate_text(
            text,
            on_finish=finished.append,
            on_progress=lambda busy: print("[*] Symbolicating...") if busy else None,
        )
        if job is None:
            print("Unknown format - cannot read this report")
            return 1

        if not dispatcher.run_until(lambda: bool(finished), timeout=args.timeout):
            job.cancel()
            print(f"[-] Symbolication did not finish within {args.timeout:.0f}s")
            return 1

        crash = finished[0]
        summary = crash.summary()
        print(f"[OK] Resolved {summary['resolved']}/{summary['frames']} frames "
              f"across {summary['images']} images")
        _write_output(crash.pretty(), args.output)
        return 0
    finally:
        task_queue.shutdown(wait=False)


if __name__ == '__main__':
    sys.exit(main())
