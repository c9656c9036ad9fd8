"""
mitopileup: heteroplasmy detection in mitochondrial sequencing data

Count alleles in aligned reads per position and strand, call homoplasmic,
heteroplasmic and low-level variants, and build consensus sequences.
"""
import ast
import sys
import pkgutil
import importlib
import importlib.util
import logging
from typing import Dict

import mitopileup.cli as cli_package
from . import __version__
from .args import HelpfulArgumentParser
from .cli import CommandLineError


logger = logging.getLogger(__name__)


class NiceFormatter(logging.Formatter):
    """
    Prefix the level name ("WARNING: ") to all log messages except
    info-level ones. The record itself is left unchanged.
    """

    def format(self, record):
        message = super().format(record)
        if record.levelno != logging.INFO:
            message = f"{record.levelname}: {message}"
        return message


def setup_logging(debug):
    """
    Set up logging. If debug is True, then DEBUG level messages are printed.
    """
    handler = logging.StreamHandler()
    handler.setFormatter(NiceFormatter())
    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if debug else logging.INFO)


def subcommand_docstrings() -> Dict[str, str]:
    """
    Map the name of each module in the cli package to its docstring.

    The docstring is the help text of the subcommand. Modules are parsed with
    the ast module instead of being imported, since importing all of them
    makes startup slow.
    """
    docstrings = dict()
    for module in pkgutil.iter_modules(cli_package.__path__):
        spec = importlib.util.find_spec(f"{cli_package.__name__}.{module.name}")
        with open(spec.origin) as f:
            docstrings[module.name] = ast.get_docstring(ast.parse(f.read()), clean=False)
    return docstrings


def summary(docstring: str) -> str:
    return docstring.strip().split("\n", maxsplit=1)[0]


def make_parser() -> HelpfulArgumentParser:
    parser = HelpfulArgumentParser(description=__doc__, prog="mitopileup")
    parser.add_argument("--version", action="version", version="%(prog)s " + __version__)
    parser.add_argument("--debug", action="store_true", default=False, help="Print debug messages")
    return parser


def get_subcommand_name(arguments) -> str:
    """Find out which subcommand was requested"""
    parser = make_parser()
    subparsers = parser.add_subparsers(dest="subcommand")
    for name, docstring in subcommand_docstrings().items():
        subparsers.add_parser(
            name, help=summary(docstring).replace("%", "%%"), description=docstring, add_help=False
        )
    args, _ = parser.parse_known_args(arguments)
    if args.subcommand is None:
        parser.error("Please provide the name of a subcommand to run")
    return args.subcommand


def main(argv=None):
    if argv is None:
        argv = sys.argv[1:]
    subcommand_name = get_subcommand_name(argv)
    module = importlib.import_module(f"{cli_package.__name__}.{subcommand_name}")

    parser = make_parser()
    subparser = parser.add_subparsers().add_parser(
        subcommand_name, help=summary(module.__doc__), description=module.__doc__
    )
    module.add_arguments(subparser)
    args = parser.parse_args(argv)
    setup_logging(args.debug)

    if hasattr(module, "validate"):
        module.validate(args, subparser)
    del args.debug
    try:
        module.main(args)
    except CommandLineError as e:
        logger.error("mitopileup error: %s", str(e))
        logger.debug("Command line error. Traceback:", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
