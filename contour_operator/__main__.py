#!/usr/bin/env python
"""
Executable entrypoint for the contour operator. Running without a command is
the same as `run`.
"""

# Standard
from typing import Any, Dict, Iterator, List, Optional, Tuple
import argparse

# First Party
import aconfig
import alog

# Local
from . import config
from .cmd import CheckHealthCmd, CmdBase, RunOperatorCmd
from .config import library_config
from .log_format import OperatorJsonFormatter

log = alog.use_channel("MAIN")

DEFAULT_COMMAND = "run"

## Library config flags ########################################################


def _config_leaves(
    config_obj: aconfig.Config, path: Tuple[str, ...] = ()
) -> Iterator[Tuple[Tuple[str, ...], Any]]:
    """Walk the config yielding the path and value of every non-section key"""
    for key, val in config_obj.items():
        if isinstance(val, aconfig.AttributeAccessDict):
            yield from _config_leaves(val, path + (key,))
        else:
            yield path + (key,), val


def add_library_config_args(parser) -> Dict[str, Tuple[str, ...]]:
    """Add a --dotted.key flag for every library config value. The current
    value is the default, so flags that are not given leave it unchanged.

    Returns:
        setters:  Dict[str, Tuple[str, ...]]
            The argparse dest of each flag mapped to its config path
    """
    setters = {}
    for path, val in _config_leaves(library_config):
        flag = "--" + ".".join(path)
        if flag in parser._option_string_actions:  # pylint: disable=protected-access
            continue
        kwargs = {
            "default": val,
            "dest": "_".join(path),
            "help": "Library config override (default: %(default)s)",
        }
        if isinstance(val, bool):
            kwargs["action"] = "store_true"
        elif isinstance(val, list):
            kwargs["nargs"] = "*"
        elif val is not None:
            kwargs["type"] = type(val)
        parser.add_argument(flag, **kwargs)
        setters[kwargs["dest"]] = path
    return setters


def update_library_config(args: argparse.Namespace, setters: Dict[str, Tuple[str, ...]]):
    """Write the parsed flag values back into the library config"""
    for dest, path in setters.items():
        section = library_config
        for key in path[:-1]:
            section = section[key]
        section[path[-1]] = getattr(args, dest)


## Parsing #####################################################################


def build_parser(
    commands: List[CmdBase],
) -> Tuple[argparse.ArgumentParser, Dict[str, argparse.ArgumentParser], Dict[str, Tuple[str, ...]]]:
    """Build the top level parser with one subparser per command, each
    accepting the library config flags
    """
    parser = argparse.ArgumentParser(description=__doc__)
    subparsers = parser.add_subparsers(help="Available commands", dest="command")
    command_parsers = {}
    setters = {}
    for cmd in commands:
        cmd_parser = cmd.add_subparser(subparsers)
        cmd_parser.set_defaults(func=cmd.cmd)
        setters = add_library_config_args(
            cmd_parser.add_argument_group("Library Configuration")
        )
        command_parsers[cmd_parser.prog.split()[-1]] = cmd_parser
    return parser, command_parsers, setters


def parse_args(argv: Optional[List[str]] = None) -> Tuple[argparse.Namespace, Dict]:
    parser, command_parsers, setters = build_parser([RunOperatorCmd(), CheckHealthCmd()])

    # Peek at the first positional to decide whether a command was given
    peek = argparse.ArgumentParser(add_help=False)
    peek.add_argument("command", nargs="?")
    peeked, _ = peek.parse_known_args(argv)
    if peeked.command in command_parsers:
        return parser.parse_args(argv), setters
    return command_parsers[DEFAULT_COMMAND].parse_args(argv), setters


## Main ########################################################################


def main(argv: Optional[List[str]] = None):
    args, setters = parse_args(argv)
    update_library_config(args, setters)

    alog.configure(
        default_level=config.log_level,
        filters=config.log_filters,
        formatter=OperatorJsonFormatter() if config.log_json else "pretty",
        thread_id=config.log_thread_id,
    )
    log.debug("Running command %s", getattr(args, "command", None) or DEFAULT_COMMAND)
    args.func(args)


if __name__ == "__main__":  # pragma: no cover
    main()
