"""Command-line interface for esmport."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from esmport.errors import ConversionError, VersionConflictError
from esmport.pipeline import load_order, run

logger = logging.getLogger(__name__)


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "project_dir",
        type=Path,
        nargs="?",
        default=Path.cwd(),
        help="Path to the app (default: current directory)",
    )
    parser.add_argument(
        "-p",
        "--package",
        action="append",
        dest="packages",
        default=None,
        help="Legacy package to handle (repeatable; default: the app's .meteor/packages)",
    )
    parser.add_argument(
        "-o",
        "--output-dir",
        type=Path,
        default=None,
        help="Folder converted packages are written to (default: npm-packages)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose (debug) output",
    )


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="esmport",
        description="Convert legacy package.js packages into ES module npm packages.",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    convert = commands.add_parser("convert", help="Convert packages and everything they depend on")
    _add_common(convert)
    convert.add_argument(
        "--check-versions",
        action="store_true",
        default=None,
        help="Resolve versions across the whole graph before converting",
    )
    convert.add_argument(
        "--force-refresh",
        action="store_true",
        default=None,
        help="Reconvert packages even when converted output already exists",
    )
    convert.add_argument(
        "--tests",
        action="store_true",
        dest="convert_tests",
        default=None,
        help="Also convert each package's test declarations",
    )
    convert.add_argument(
        "--skip-non-local",
        action="store_true",
        default=None,
        help="Keep existing output of packages that are not local to the app",
    )
    convert.add_argument(
        "--write-dependencies",
        action="store_true",
        help="Write client/dependencies.js and server/dependencies.js",
    )

    order = commands.add_parser("load-order", help="Print the load order of converted packages")
    _add_common(order)
    order.add_argument(
        "--arch",
        choices=("client", "server"),
        default=None,
        help="Only print this side",
    )

    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.WARNING, format="%(message)s")
    if args.verbose:
        logging.getLogger("esmport").setLevel(logging.DEBUG)

    try:
        if args.command == "convert":
            report = run(
                args.project_dir,
                packages=args.packages,
                write_dependencies=args.write_dependencies,
                output_dir=args.output_dir,
                check_versions=args.check_versions,
                force_refresh=args.force_refresh,
                convert_tests=args.convert_tests,
                skip_non_local=args.skip_non_local,
            )
            for name in report.converted:
                print(name)
        else:
            orders = load_order(args.project_dir, packages=args.packages, output_dir=args.output_dir)
            for side, entries in orders.items():
                if args.arch and side != args.arch:
                    continue
                print(f"{side}:")
                for entry in entries:
                    flags = [flag for flag, on in (("lazy", entry.is_lazy), ("prod-only", entry.prod_only)) if on]
                    suffix = f" ({', '.join(flags)})" if flags else ""
                    print(f"  {entry.name}{suffix}")
    except VersionConflictError as e:
        logger.error("Version conflicts:")
        for name, versions in sorted(e.conflicts.items()):
            logger.error("  %s: %s", name, ", ".join(versions))
        sys.exit(1)
    except ConversionError as e:
        logger.error("%s", e)
        sys.exit(1)
