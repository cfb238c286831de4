#!/usr/bin/env python3
"""
alicekit command line.

Usage:
    alicekit ar extract data.afa -o out/             # extract everything
    alicekit ar extract data.afa -n cg/title.qnt     # extract one file
    alicekit ar extract data.afa --toc order.txt     # extract listed files, in order
    alicekit ar list data.afa
    alicekit ex dump game.ex --split dump/
"""

import argparse
import logging
import sys

from . import config
from .archive import open_archive
from .errors import AliceError
from .ex import parse_file
from .ex_dump import dump, dump_split
from .extract import ExtractOptions, Outcome, extract_all, extract_one, read_toc


def non_negative_int(text: str) -> int:
    try:
        value = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid index: {text!r}") from None
    if value < 0:
        raise argparse.ArgumentTypeError(f"index must not be negative: {value}")
    return value


def error(message: str) -> int:
    print(f"ERROR: {message}", file=sys.stderr)
    return 1


def print_entry_result(res):
    if res.outcome == Outcome.EXTRACTED:
        print(f"   ✓ {res.name} -> {res.path}")
    elif res.outcome == Outcome.SKIPPED:
        return
    else:
        print(f"   ⚠ {res.name}: {res.outcome.value}: {res.message}")


def cmd_ar_extract(args) -> int:
    try:
        options = ExtractOptions(
            force=args.force,
            images_only=args.images_only,
            raw=args.raw,
            image_format=args.image_format or config.IMAGE_FORMAT,
        )
    except AliceError as e:
        return error(str(e))

    try:
        archive, kind = open_archive(args.archive, args.encoding)
    except (AliceError, OSError) as e:
        return error(f"Opening archive: {e}")

    toc = None
    if args.toc:
        try:
            toc = read_toc(args.toc)
        except (OSError, UnicodeDecodeError) as e:
            archive.close()
            return error(f"Reading TOC file: {e}")

    with archive:
        if args.index is not None or args.name is not None:
            if args.index is not None and args.name is not None:
                print(f"   ⚠ Both --index and --name given; using index {args.index}")
            selector = args.index if args.index is not None else args.name
            try:
                res = extract_one(archive, selector, args.output, options)
            except AliceError as e:
                return error(str(e))
            print_entry_result(res)
            return 1 if res.outcome == Outcome.FAILED else 0

        print(f"Extracting {len(archive)} entries from {args.archive} ({kind.value})")
        result = extract_all(archive, args.output or ".", options, toc)
        if not result.ok:
            return error(result.fatal)
        for res in result.results:
            print_entry_result(res)
        print(
            f"\nExtracted {result.extracted} files "
            f"({len(result.by_outcome(Outcome.SKIPPED))} skipped, "
            f"{len(result.by_outcome(Outcome.CONFLICT))} conflicts, "
            f"{len(result.by_outcome(Outcome.FAILED))} failed, "
            f"{len(result.by_outcome(Outcome.UNMATCHED))} not found)"
        )
    return 0


def cmd_ar_list(args) -> int:
    try:
        archive, kind = open_archive(args.archive, args.encoding)
    except (AliceError, OSError) as e:
        return error(f"Opening archive: {e}")
    with archive:
        for entry in archive:
            print(f"{entry.index:6d} {entry.size:10d} {entry.name}")
    return 0


def cmd_ex_dump(args) -> int:
    try:
        document = parse_file(args.file, args.encoding)
    except (AliceError, OSError) as e:
        return error(f"Reading {args.file}: {e}")

    out = sys.stdout
    try:
        if args.output:
            out = open(args.output, "w", encoding="utf-8", newline="\n")
        if args.split:
            dump_split(document, args.split, out)
        else:
            dump(document, out)
    except (AliceError, OSError) as e:
        return error(str(e))
    finally:
        if out is not sys.stdout:
            out.close()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="alicekit", description="System4 archive and EX tools")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show debug logging")
    commands = parser.add_subparsers(dest="command", required=True)

    ar = commands.add_parser("ar", help="Archive tools")
    ar_commands = ar.add_subparsers(dest="ar_command", required=True)

    p = ar_commands.add_parser("extract", help="Extract an archive file")
    p.add_argument("archive", help="Archive file (.afa, .ald, .flat, .alk)")
    p.add_argument("-o", "--output", help="Output file (single entry) or directory")
    p.add_argument("-i", "--index", type=non_negative_int, help="Extract the entry at this index")
    p.add_argument("-n", "--name", help="Extract the entry with this name")
    p.add_argument("-f", "--force", action="store_true", help="Allow overwriting existing files")
    p.add_argument("--image-format", type=str.lower, choices=["png", "webp"],
                   help=f"Image output format (default: {config.IMAGE_FORMAT})")
    p.add_argument("--images-only", action="store_true", help="Only extract images")
    p.add_argument("--raw", action="store_true", help="Don't convert image files")
    p.add_argument("--toc", help="Table of contents file: names to extract, in order")
    p.add_argument("--encoding", default=None, help=f"Name encoding (default: {config.INPUT_ENCODING})")
    p.set_defaults(func=cmd_ar_extract)

    p = ar_commands.add_parser("list", help="List archive contents")
    p.add_argument("archive")
    p.add_argument("--encoding", default=None)
    p.set_defaults(func=cmd_ar_list)

    exp = commands.add_parser("ex", help="EX file tools")
    ex_commands = exp.add_subparsers(dest="ex_command", required=True)

    p = ex_commands.add_parser("dump", help="Dump an EX file as text")
    p.add_argument("file")
    p.add_argument("-o", "--output", help="Output file (default: stdout)")
    p.add_argument("--split", metavar="DIR", help="Write one file per block into DIR")
    p.add_argument("--encoding", default=None, help=f"String encoding (default: {config.INPUT_ENCODING})")
    p.set_defaults(func=cmd_ex_dump)

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else config.LOG_LEVEL,
        format="%(levelname)s: %(name)s: %(message)s",
    )
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
