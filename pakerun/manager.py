# -*- coding: utf-8 -*-
#
# pakerun : a device provisioning test run orchestrator
# Copyright : (c) 2020-2021 Josh Schmelzle
# License : BSD-3-Clause
# Maintainer : josh@joshschmelzle.com


"""
pakerun.manager
~~~~~~~~~~~~~~~

handle a run from the command line
"""

# standard library imports
import argparse
import asyncio
import inspect
import logging
import os
import platform
import sys

# third party imports
import scapy  # type: ignore
import serial  # type: ignore

# app imports
from . import helpers
from .__version__ import __version__
from .env import Env
from .run import Run, RunError


def are_we_root() -> bool:
    """Do we have root permissions?"""
    if os.geteuid() == 0:
        return True
    else:
        return False


def start(args: argparse.Namespace) -> int:
    """Begin work"""
    log = logging.getLogger(inspect.stack()[0][3])

    if args.pytest:
        sys.exit("pytest")

    if not are_we_root():
        log.error("pakerun must be run with root permissions... exiting...")
        sys.exit(-1)

    helpers.setup_logger(args)

    log.debug("%s version %s", __name__.split(".")[0], __version__)
    log.debug("python platform version is %s", platform.python_version())
    try:
        log.debug("scapy version is %s", scapy.__version__)
        log.debug("pyserial version is %s", serial.__version__)
    except AttributeError:
        log.exception("could not get version information from dependencies")
    log.debug("args: %s", args)

    missing = helpers.missing_tools()
    if missing:
        log.error("missing required tools: %s", ", ".join(missing))
        log.error("please install using your distro's package manager.")
        sys.exit(-1)

    config = helpers.setup_config(args)
    if not helpers.validate(config):
        log.error("configuration validation failed... exiting...")
        sys.exit(-1)

    env = Env.from_config(config)

    try:
        result = asyncio.run(Run(env).run())
    except RunError:
        log.exception("run failed")
        return 1
    except Exception:
        log.exception("run aborted by an unexpected error")
        return 1
    except KeyboardInterrupt:
        print("Detected SIGINT or Control-C ...")
        return 2

    helpers.write_result(result.to_dict(), args.output)
    return 0
