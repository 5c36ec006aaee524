"""
Probe a running operator's health endpoint
"""
# Standard
import argparse

# Third Party
import urllib3

# First Party
import alog

# Local
from .. import config
from .base import CmdBase

log = alog.use_channel("MAIN")


class CheckHealthCmd(CmdBase):
    __doc__ = __doc__

    ## Interface ##

    def add_subparser(
        self,
        subparsers: argparse._SubParsersAction,
    ) -> argparse.ArgumentParser:
        parser = subparsers.add_parser("check-health", help=__doc__)
        runtime_args = parser.add_argument_group("Check Health Configuration")
        runtime_args.add_argument(
            "--endpoint",
            "-e",
            default="healthz",
            choices=["healthz", "readyz"],
            help="Which probe to check",
        )
        runtime_args.add_argument(
            "--host",
            default="127.0.0.1",
            help="Host serving the probes",
        )
        runtime_args.add_argument(
            "--timeout",
            "-t",
            type=float,
            default=5.0,
            help="Seconds to wait for a response",
        )
        return parser

    def cmd(self, args: argparse.Namespace):
        """Request the probe and fail unless it answers 200"""
        url = f"http://{args.host}:{config.health.port}/{args.endpoint}"
        http = urllib3.PoolManager()
        try:
            response = http.request(
                "GET", url, timeout=args.timeout, retries=False
            )
        except urllib3.exceptions.HTTPError as err:
            msg = f"Health Check failed: {url} unreachable: {err}"
            log.error(msg)
            raise ConnectionError(msg) from err

        if response.status != 200:
            msg = f"Health Check failed: {url} returned {response.status}"
            log.error(msg)
            raise RuntimeError(msg)
        log.info("Health Check passed: %s", url)
