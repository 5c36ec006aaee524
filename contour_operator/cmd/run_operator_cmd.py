"""
This is the main entrypoint command for running the operator
"""
# Standard
from typing import List, Optional
import argparse
import os
import signal
import threading

# Third Party
import yaml

# First Party
import alog

# Local
from .. import config
from ..manager import Operator, make_client
from .base import CmdBase

log = alog.use_channel("MAIN")


class RunOperatorCmd(CmdBase):
    __doc__ = __doc__

    ## Interface ##

    def add_subparser(
        self,
        subparsers: argparse._SubParsersAction,
    ) -> argparse.ArgumentParser:
        parser = subparsers.add_parser("run", help=__doc__)
        runtime_args = parser.add_argument_group("Runtime Configuration")
        runtime_args.add_argument(
            "--cr",
            "-c",
            default=None,
            help="(dry run) A Contour manifest yaml to apply directly",
        )
        runtime_args.add_argument(
            "--resource_dir",
            "-r",
            default=None,
            help="(dry run) Path to a directory of yaml files that should exist in the cluster",
        )
        runtime_args.add_argument(
            "--sync_timeout",
            type=float,
            default=10.0,
            help="(dry run) Seconds to wait for the caches before applying --cr",
        )
        return parser

    def cmd(self, args: argparse.Namespace):
        assert args.cr is None or (
            config.dry_run and os.path.isfile(args.cr)
        ), "Can only specify --cr with dry run and it must point to a valid file"
        assert args.resource_dir is None or (
            config.dry_run and os.path.isdir(args.resource_dir)
        ), "Can only specify --resource_dir with dry run and it must point to a valid directory"

        client = make_client(self._parse_resource_dir(args.resource_dir))
        operator = Operator(client=client)

        stopped = threading.Event()

        def do_stop(signum, *_):  # pragma: no cover
            log.info("Received signal %s", signum)
            stopped.set()

        signal.signal(signal.SIGINT, do_stop)
        signal.signal(signal.SIGTERM, do_stop)

        log.info("Starting Operator")
        operator.start_servers()
        operator.start()

        if args.cr:
            if not operator.wait_for_sync(timeout=args.sync_timeout):
                log.warning("Caches not synced after %ss", args.sync_timeout)
            self._apply_cr(client, args.cr)

        stopped.wait()
        log.info("SHUTTING DOWN")
        operator.stop()

    ## Impl ##

    @staticmethod
    def _apply_cr(client, cr_path: str):
        """Create the Contour in the given file, defaulting its namespace"""
        log.info("Applying CR [%s]", cr_path)
        with open(cr_path, encoding="utf-8") as handle:
            cr_manifest = yaml.safe_load(handle)
        cr_manifest.setdefault("metadata", {}).setdefault("namespace", "default")
        log.debug3(cr_manifest)
        client.create(cr_manifest)

    @staticmethod
    def _parse_resource_dir(resource_dir: Optional[str]) -> List[dict]:
        """If given, this will parse all yaml files found in the given directory"""
        all_resources = []
        if resource_dir is not None:
            for fname in sorted(os.listdir(resource_dir)):
                if fname.endswith(".yaml") or fname.endswith(".yml"):
                    resource_path = os.path.join(resource_dir, fname)
                    log.debug3("Reading resource file [%s]", resource_path)
                    with open(resource_path, encoding="utf-8") as handle:
                        all_resources.extend(
                            doc for doc in yaml.safe_load_all(handle) if doc
                        )
        return all_resources
