"""
Episode Processor - command line entry point.

    episode-processor process --preset show.yaml recording.mp4 AA001 -s 00:10:01 01:02:12 02:12:30 -e 03:04:56
    episode-processor create-preset show.yaml
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import List, Optional

from .config import build_config, create_example_preset, load_preset
from .logger import get_logger, setup_logging
from .processor import EpisodeProcessor


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='episode-processor',
        description='Cut a recording into parts, render published formats and upload them.'
    )
    commands = parser.add_subparsers(dest='command', required=True)

    process = commands.add_parser('process', help='Process source into published episode')
    process.add_argument('source', help='Source recording file')
    process.add_argument('output_base', help='Base name for folder and output filenames')
    process.add_argument(
        'cuts', nargs='*',
        help='Timestamps at which cuts are made between parts ("skip" drops the next interval)'
    )
    process.add_argument('--preset', help='Preset file (YAML)')
    process.add_argument('-s', '--start', help='Start timestamp for first part')
    process.add_argument('-e', '--end', help='End timestamp for last part')
    process.add_argument('-f', '--force', action='store_true', default=None, help='Skip confirmation on encoding plan')
    process.add_argument('--hw-enc', choices=['nvidia'], help='Use hardware encoder')
    process.add_argument('--work-dir', help='Folder the output folder is created in (default: current folder)')
    process.add_argument('--log-level', help='DEBUG, INFO, WARNING or ERROR')

    preset = commands.add_parser('create-preset', help='Create a preset file')
    preset.add_argument('filename', help='Preset filename')

    return parser


def create_preset(filename: str) -> int:
    path = Path(filename)
    if path.suffix not in ('.yaml', '.yml'):
        path = path.with_name(path.name + '.yaml')

    if path.exists():
        print(f"Error: Preset file {path} already exists", file=sys.stderr)
        return 1

    create_example_preset(str(path))
    print(f"Preset {path} created, go forth and edit it")
    return 0


async def process(args: argparse.Namespace) -> int:
    """Load configuration and run the processor."""
    try:
        preset = load_preset(args.preset) if args.preset else {}
        config = build_config(
            preset,
            source=args.source,
            output_base=args.output_base,
            cuts=args.cuts,
            start=args.start,
            end=args.end,
            force=args.force,
            hw_enc=args.hw_enc,
            work_dir=args.work_dir,
        )
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    setup_logging(
        level=args.log_level or config.logging.level,
        log_file=config.logging.file or None,
        max_size_mb=config.logging.max_size_mb,
        backup_count=config.logging.backup_count
    )

    processor = EpisodeProcessor(config)
    try:
        return await processor.run()
    except Exception as e:
        get_logger('app').error(f"Fatal error: {e}")
        raise


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == 'create-preset':
        return create_preset(args.filename)

    try:
        return asyncio.run(process(args))
    except KeyboardInterrupt:
        return 130


def run() -> None:
    sys.exit(main())


if __name__ == '__main__':
    run()
