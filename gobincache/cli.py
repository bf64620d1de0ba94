"""
Command line entry point.

Maps a staleness check onto process exit codes:
0 when the binary is up to date, 2 when it is missing or needs
reinstalling, 1 for any error.
"""

import argparse
import json
import sys

from .config import load_config, validate_config
from .logging_config import get_logger, setup_logging
from .resolver import CheckResult, check_binary

EXIT_UP_TO_DATE = 0
EXIT_ERROR = 1
EXIT_NEEDS_INSTALL = 2
EXIT_INTERRUPTED = 130

EXIT_CODES = {
    "ok": EXIT_UP_TO_DATE,
    "stale": EXIT_NEEDS_INSTALL,
    "error": EXIT_ERROR,
}

LONG_DESCRIPTION = """\
gobincache determines whether a Go binary is up-to-date relative to its module
in your go.mod.

It assumes the use of a "tools.go" approach to versioning binaries in your
project.

The command exits with code 0 when the binary currently installed is
up-to-date. It exits with code 2 when the binary is either not present or
requires updating via "go install".

Any other error makes the command exit with code 1 (e.g. failing to parse
the go.mod file).
"""


def exit_code_for(result: CheckResult) -> int:
    """Translate a check result into a process exit code."""
    return EXIT_CODES[result.status]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gobincache",
        description=LONG_DESCRIPTION,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "binary",
        help="Path to the installed Go binary",
    )
    parser.add_argument(
        "--manifest", "-m",
        default=None,
        help="Path to go.mod (default: go.mod in the working directory)",
    )
    parser.add_argument(
        "--config", "-c",
        default=None,
        help="Path to a YAML configuration file",
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Fail instead of reinstalling when the binary's module is not in go.mod",
    )
    parser.add_argument(
        "--first-match",
        action="store_true",
        help="Use the first requirement when go.mod lists a module more than once",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the result as JSON",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Verbose output",
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Only log errors",
    )
    return parser


def main(argv=None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config, verbose=args.verbose)
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_ERROR

    setup_logging(
        level=config.logging.level,
        log_file=config.logging.file,
        verbose=args.verbose,
        quiet=args.quiet,
    )
    logger = get_logger()
    for warning in validate_config(config):
        logger.warning(warning)

    result = check_binary(
        args.binary,
        manifest_path=args.manifest or config.manifest,
        missing_module="error" if args.strict else config.policy.missing_module,
        duplicates="first" if args.first_match else config.policy.duplicates,
        verbose=args.verbose,
    )

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    elif result.error is not None:
        print(f"error: {result.error}", file=sys.stderr)
    elif result.needs_install:
        logger.info(f"{result.binary_path} requires install ({result.reason})")
    else:
        logger.info(f"{result.binary_path} is up to date")

    return exit_code_for(result)


def run() -> None:
    """Console script wrapper that handles interrupts."""
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        sys.exit(EXIT_INTERRUPTED)
