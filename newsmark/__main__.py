"""convert, repair and score newsletter content from the command line"""

import argparse
import dataclasses
import json
import logging
import sys

from .convert import FORMATS, ConversionError, convert
from .fidelity import DEFAULT_THRESHOLD, validate
from .repair import repair_markdown

log = logging.getLogger("newsmark")


def _read(path):
    if path in (None, "-"):
        return sys.stdin.read()
    with open(path, encoding="utf-8") as fp:
        return fp.read()


def _convert(args):
    result = convert(_read(args.file), args.source, args.target,
                     repair=not args.no_repair)
    if not isinstance(result, str):
        result = json.dumps(result, indent=2)
    print(result)


def _repair(args):
    print(repair_markdown(_read(args.file)))


def _score(args):
    result = validate(_read(args.original), _read(args.converted),
                      threshold=args.threshold)
    print(json.dumps(dataclasses.asdict(result), indent=2))


def main(argv=None):
    parser = argparse.ArgumentParser(prog="newsmark",
                                     description=__doc__)
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="log debug details to stderr")
    commands = parser.add_subparsers(dest="command", required=True)

    command = commands.add_parser("convert", help="convert between formats")
    command.add_argument("-f", "--from", dest="source", required=True,
                         choices=FORMATS)
    command.add_argument("-t", "--to", dest="target", required=True,
                         choices=FORMATS)
    command.add_argument("--no-repair", action="store_true",
                         help="parse markdown input as is")
    command.add_argument("file", nargs="?", help="input file (default stdin)")
    command.set_defaults(handler=_convert)

    command = commands.add_parser("repair", help="balance markdown delimiters")
    command.add_argument("file", nargs="?", help="input file (default stdin)")
    command.set_defaults(handler=_repair)

    command = commands.add_parser("score", help="score conversion fidelity")
    command.add_argument("original")
    command.add_argument("converted")
    command.add_argument("--threshold", type=int, default=DEFAULT_THRESHOLD)
    command.set_defaults(handler=_score)

    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose
                        else logging.WARNING,
                        format="%(levelname)s %(name)s: %(message)s")
    try:
        args.handler(args)
    except ConversionError as err:
        log.error("%s", err)
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
