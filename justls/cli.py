"""
justls.cli - justls Command Line Interface

This module provides the main CLI entry point for justls with subcommand
support:

- justls               Start the language server on stdio
- justls lsp           Start the language server on stdio (explicit)
- justls parse <file>  Print the definitions and parse errors of a justfile
"""

import argparse
import sys
import traceback
from typing import Optional

from justls import __version__


def cmd_lsp(args: argparse.Namespace) -> int:
    """Start the Language Server Protocol server."""
    from justls.lsp.server import start_server

    try:
        return start_server(log_path=args.log)
    except Exception as e:
        print(f"Error starting LSP server: {e}", file=sys.stderr)
        traceback.print_exc(file=sys.stderr)
        return 1


def cmd_parse(args: argparse.Namespace) -> int:
    """Parse a justfile and print what was found."""
    from justls.syntax import Recipe, parse_justfile

    try:
        with open(args.file, encoding="utf-8") as f:
            source = f.read()
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    result = parse_justfile(source)
    data = result.data

    for node in result.nodes:
        name = node.name.text(data)
        where = f"{args.file}:{node.line + 1}:{node.col}"
        if isinstance(node, Recipe):
            deps = " ".join(span.text(data) for span in node.dependencies)
            print(f"{where}: recipe {name}: {deps}".rstrip())
            print(f"    {len(node.body)} command line(s)")
        else:
            value = node.value.text(data).strip() if node.value else ""
            print(f"{where}: variable {name} := {value}")

    for error in result.errors:
        print(
            f"{args.file}:{error.line + 1}:{error.col}: error: {error.message}",
            file=sys.stderr,
        )

    return 1 if result.errors else 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        prog="justls",
        description="justls - a language server for justfiles",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
examples:
  justls                        Start the language server on stdio
  justls lsp --log /tmp/ls.log  Start the server, logging to a file
  justls parse justfile         Show recipes, variables and errors
        """,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    parser.add_argument(
        "--log",
        metavar="FILE",
        help="Log file for debugging LSP communication",
    )

    # Subcommands
    subparsers = parser.add_subparsers(dest="subcommand", help="Available commands")

    # lsp subcommand
    lsp_parser = subparsers.add_parser(
        "lsp", help="Start the Language Server Protocol server"
    )
    lsp_parser.add_argument(
        "--log",
        metavar="FILE",
        default=argparse.SUPPRESS,
        help="Log file for debugging LSP communication",
    )

    # parse subcommand
    parse_parser = subparsers.add_parser(
        "parse", help="Parse a justfile and print its definitions"
    )
    parse_parser.add_argument("file", help="Path to the justfile")

    return parser


def main(argv: Optional[list[str]] = None) -> None:
    """Main entry point for the justls CLI. Calls sys.exit with return code."""
    sys.exit(_main(argv))


def _main(argv: Optional[list[str]] = None) -> int:
    """Internal main that returns exit code."""
    if argv is None:
        argv = sys.argv[1:]

    parser = create_parser()
    args = parser.parse_args(argv)

    if args.subcommand == "parse":
        return cmd_parse(args)

    # No subcommand - start the server
    return cmd_lsp(args)


if __name__ == "__main__":
    main()
