# -* coding: utf-8 -*-
#
# pakerun : a device provisioning test run orchestrator
# Copyright : (c) 2020-2021 Josh Schmelzle
# License : BSD-3-Clause
# Maintainer : josh@joshschmelzle.com

"""
pakerun.helpers
~~~~~~~~~~~~~~~

provides init functions that are used to help setup the app.
"""

# standard library imports
import argparse
import asyncio
import configparser
import inspect
import ipaddress
import json
import logging
import logging.config
import os
import shutil
import sys
from typing import Any, Dict, List, Optional

# app imports
from .__version__ import __version__
from .constants import (
    CONFIG_FILE,
    DEFAULT_AUTHENTICATOR,
    DEFAULT_BAUDRATE,
    DEFAULT_DUMPCAP,
    DEFAULT_SUBNET,
    REQUIRED_TOOLS,
)

REQUIRED_OPTIONS = {
    "DEVICE": ["serial"],
    "DIRECT": ["netif", "wpa_ctrl", "ssid", "passphrase", "auth_ip", "device_ip"],
    "INFRA": ["netif", "ssid", "passphrase", "gateway_ip"],
    "AUTHENTICATOR": ["keychain", "ca_profile", "network_prefix"],
}


class CommandError(Exception):
    """Raised when an external command exits with a non-zero return code"""

    def __init__(self, cmd: List[str], returncode: int, output: str = ""):
        self.cmd = cmd
        self.returncode = returncode
        self.output = output
        super().__init__(
            f"{' '.join(cmd)} exited with code {returncode}: {output.strip()}"
        )


def setup_logger(args) -> None:
    """Configure and set logging levels"""
    logging_level = logging.INFO
    if args.logging:
        if args.logging == "debug":
            logging_level = logging.DEBUG
        if args.logging == "warning":
            logging_level = logging.WARNING
    if args.debug:
        logging_level = logging.DEBUG

    # stdout carries the result json, so logs go to stderr
    default_logging = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {"format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s"}
        },
        "handlers": {
            "default": {
                "level": logging_level,
                "formatter": "standard",
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stderr",
            }
        },
        "loggers": {"": {"handlers": ["default"], "level": logging_level}},
    }
    logging.config.dictConfig(default_logging)


def netif(value: str) -> str:
    """Check if the network interface name is valid"""
    if not value or len(value) > 15 or "/" in value or " " in value:
        raise ValueError("%s is not a valid interface name" % value)
    return value


def ssid(value: str) -> str:
    """Check if SSID is valid"""
    if len(value) > 32:
        raise ValueError("%s length is greater than 32" % value)
    return value


def ipv4(value: str) -> str:
    """Check if the value is an IPv4 address"""
    return str(ipaddress.IPv4Address(value))


def subnet(value) -> int:
    """Check if the subnet prefix length is valid"""
    try:
        prefix = int(value)
    except ValueError:
        raise ValueError("%s is not a number" % value)
    if not 0 <= prefix <= 32:
        raise ValueError("%s is not a valid prefix length" % prefix)
    return prefix


def setup_parser() -> argparse.ArgumentParser:
    """Set default values and handle arg parser"""
    parser = argparse.ArgumentParser(
        formatter_class=argparse.RawDescriptionHelpFormatter,
        description="pakerun performs one provisioning test run against a device and captures its traffic",
    )
    parser.add_argument(
        "--pytest",
        dest="pytest",
        action="store_true",
        default=False,
        help=argparse.SUPPRESS,
    )
    parser.add_argument(
        "--config",
        type=str,
        metavar="FILE",
        default=CONFIG_FILE,
        help="customize path for configuration file (default: %(default)s)",
    )
    parser.add_argument(
        "--serial",
        dest="serial",
        metavar="PORT",
        help="set serial port of the device (override --config <file>)",
    )
    parser.add_argument(
        "--direct-netif",
        dest="direct_netif",
        type=netif,
        help="set network interface joining the device's direct network",
    )
    parser.add_argument(
        "--infra-netif",
        dest="infra_netif",
        type=netif,
        help="set network interface capturing on the infrastructure network",
    )
    parser.add_argument(
        "-o",
        "--output",
        dest="output",
        metavar="FILE",
        help="write run result json to FILE instead of stdout",
    )
    parser.add_argument(
        "--debug",
        dest="debug",
        action="store_true",
        default=False,
        help="enable debug logging output",
    )
    parser.add_argument(
        "--logging",
        help="change logging output",
        nargs="?",
        choices=("debug", "warning"),
    )
    parser.add_argument("--version", "-V", action="version", version=f"{__version__}")
    return parser


def convert_configparser_to_dict(config: configparser.ConfigParser) -> Dict:
    """
    Convert ConfigParser object to dictionary.

    The resulting dictionary has sections as keys which point to a dict of the
    section options as key => value pairs. Values stay strings, an SSID or
    passphrase such as "on" must reach the device unchanged.
    """
    _dict: "Dict[str, Any]" = {}
    for section in config.sections():
        _dict[section] = dict(config.items(section))
    return _dict


def load_config(config_file: str) -> configparser.ConfigParser:
    """Load in config from external file"""
    # interpolation off: passphrases may contain %
    config = configparser.ConfigParser(interpolation=None)
    config.read(config_file)
    return config


def setup_config(args) -> Dict:
    """Create the configuration (serial port, interfaces, credentials) for a run"""
    log = logging.getLogger(inspect.stack()[0][3])

    if os.path.isfile(args.config):
        parser = load_config(args.config)
        config = convert_configparser_to_dict(parser)
    else:
        log.warning("can not find config at %s", args.config)
        config = {}

    for section in ("DEVICE", "DIRECT", "INFRA", "AUTHENTICATOR", "CAPTURE"):
        if section not in config:
            config[section] = {}

    config["DEVICE"].setdefault("baudrate", DEFAULT_BAUDRATE)
    config["DIRECT"].setdefault("subnet", DEFAULT_SUBNET)
    config["AUTHENTICATOR"].setdefault("command", DEFAULT_AUTHENTICATOR)
    config["CAPTURE"].setdefault("dumpcap", DEFAULT_DUMPCAP)

    # args passed in take precedent over config.ini values
    if args.serial:
        config["DEVICE"]["serial"] = args.serial
    if args.direct_netif:
        config["DIRECT"]["netif"] = args.direct_netif
    if args.infra_netif:
        config["INFRA"]["netif"] = args.infra_netif

    try:
        config["DEVICE"]["baudrate"] = int(config["DEVICE"]["baudrate"])
    except ValueError:
        log.warning(
            "baudrate %s is not a number, using %s",
            config["DEVICE"]["baudrate"],
            DEFAULT_BAUDRATE,
        )
        config["DEVICE"]["baudrate"] = DEFAULT_BAUDRATE

    return config


def check_config_missing(config: Dict) -> bool:
    """Check that the minimal config items exist"""
    log = logging.getLogger(inspect.stack()[0][3])
    try:
        for section, options in REQUIRED_OPTIONS.items():
            if section not in config:
                raise KeyError(f"missing {section} section from configuration")
            for option in options:
                if config[section].get(option) in (None, ""):
                    raise KeyError(f"missing {option} from {section} config")
    except KeyError:
        log.error("%s", sys.exc_info()[1])
        return False
    return True


def validate(config: Dict) -> bool:
    """Validate minimum config to run is OK"""
    log = logging.getLogger(inspect.stack()[0][3])

    if not check_config_missing(config):
        return False

    try:
        netif(str(config["DIRECT"]["netif"]))
        netif(str(config["INFRA"]["netif"]))
        ssid(str(config["DIRECT"]["ssid"]))
        ssid(str(config["INFRA"]["ssid"]))
        ipv4(str(config["DIRECT"]["auth_ip"]))
        ipv4(str(config["DIRECT"]["device_ip"]))
        ipv4(str(config["INFRA"]["gateway_ip"]))
        subnet(config["DIRECT"]["subnet"])
    except ValueError:
        log.error("%s", sys.exc_info()[1])
        return False

    return True


def missing_tools(tools: Optional[List[str]] = None) -> List[str]:
    """Return the required tools which are not installed"""
    return [tool for tool in (tools or REQUIRED_TOOLS) if shutil.which(tool) is None]


async def run_command_async(cmd: List[str], check: bool = True) -> str:
    """Run a single CLI command in a subprocess and return stdout"""
    log = logging.getLogger(inspect.stack()[0][3])
    log.debug("run: %s", " ".join(cmd))
    proc = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await proc.communicate()
    out = stdout.decode("utf-8", errors="replace")
    if check and proc.returncode != 0:
        raise CommandError(
            cmd, proc.returncode, stderr.decode("utf-8", errors="replace") or out
        )
    return out


def write_result(result: Dict, path: Optional[str] = None) -> None:
    """Write run result json to path, or stdout when no path is given"""
    log = logging.getLogger(inspect.stack()[0][3])
    text = json.dumps(result, indent=2)
    if path:
        with open(path, "w") as _file:
            _file.write(text + "\n")
        log.info("wrote run result to %s", path)
    else:
        print(text)
