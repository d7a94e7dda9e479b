# -*- mode: python; tab-width: 4; indent-tabs-mode: nil; python-indent-offset: 4; coding: utf-8 -*-
"""
Main executable
"""
import argparse
import logging
import sys

from . import dump

parser = argparse.ArgumentParser(description="Inspect flatproto buffers.")
parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output")
subparsers = parser.add_subparsers(help="Subcommand to run")
dump.setup(subparsers)


def main(argv=None) -> int:
    args = parser.parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG)
    if not hasattr(args, "func"):
        parser.print_help()
        return 2
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
