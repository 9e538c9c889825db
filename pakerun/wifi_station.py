# -*- coding: utf-8 -*-
#
# pakerun : a device provisioning test run orchestrator
# Copyright : (c) 2020-2021 Josh Schmelzle
# License : BSD-3-Clause
# Maintainer : josh@joshschmelzle.com

"""
pakerun.wifi_station
~~~~~~~~~~~~~~~~~~~~

join and leave a wireless network through wpa_supplicant's control socket
"""

# standard library imports
import asyncio
import logging
from typing import Dict, Optional

# app imports
from .constants import WIFI_CONNECT_TIMEOUT, WIFI_STATUS_POLL_INTERVAL
from .helpers import CommandError, run_command_async


class WifiStationError(Exception):
    """Custom exception used when joining or leaving a network fails"""


def parse_status(output: str) -> Dict[str, str]:
    """Parse `wpa_cli status` key=value output"""
    status = {}
    for line in output.splitlines():
        key, sep, value = line.partition("=")
        if sep:
            status[key.strip()] = value.strip()
    return status


class WifiStation:
    """Station side of a wpa_supplicant managed interface"""

    def __init__(self, timeout: float = WIFI_CONNECT_TIMEOUT):
        self.log = logging.getLogger(self.__class__.__name__.lower())
        self.timeout = timeout
        self.ctrl: Optional[str] = None
        self.netif: Optional[str] = None
        self.network_id: Optional[str] = None
        self.local_ip: Optional[str] = None

    @property
    def connected(self) -> bool:
        return self.network_id is not None

    async def _wpa_cli(self, *args: str) -> str:
        cmd = ["wpa_cli", "-p", self.ctrl, "-i", self.netif, *args]
        try:
            out = await run_command_async(cmd)
        except (CommandError, OSError) as err:
            raise WifiStationError(str(err)) from err
        if out.strip().endswith("FAIL"):
            raise WifiStationError(f"wpa_cli {' '.join(args)} failed")
        return out

    async def _ip(self, *args: str) -> None:
        try:
            await run_command_async(["ip", *args])
        except (CommandError, OSError) as err:
            raise WifiStationError(str(err)) from err

    async def connect(
        self, ctrl: str, netif: str, ssid: str, passphrase: str, local_ip: str
    ) -> None:
        """
        Join a WPA-PSK network and assign a static address.

        Args:
            ctrl: wpa_supplicant control socket directory
            netif: network interface managed by wpa_supplicant
            ssid: network name
            passphrase: WPA passphrase
            local_ip: address with prefix length, e.g. 192.168.4.2/24
        """
        if self.connected:
            raise WifiStationError(f"{self.netif} is already connected")
        self.ctrl = ctrl
        self.netif = netif

        out = await self._wpa_cli("add_network")
        network_id = out.strip().splitlines()[-1] if out.strip() else ""
        if not network_id.isdigit():
            raise WifiStationError(f"unexpected add_network reply: {out.strip()}")
        self.network_id = network_id

        await self._wpa_cli("set_network", network_id, "ssid", f'"{ssid}"')
        await self._wpa_cli("set_network", network_id, "psk", f'"{passphrase}"')
        await self._wpa_cli("select_network", network_id)
        self.log.info("joining %s on %s", ssid, netif)
        await self._wait_completed()

        await self._ip("addr", "add", local_ip, "dev", netif)
        self.local_ip = local_ip
        self.log.info("joined %s on %s as %s", ssid, netif, local_ip)

    async def _wait_completed(self) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout
        while True:
            status = parse_status(await self._wpa_cli("status"))
            state = status.get("wpa_state", "UNKNOWN")
            if state == "COMPLETED":
                return
            if loop.time() >= deadline:
                raise WifiStationError(
                    f"{self.netif} did not associate within {self.timeout}s (wpa_state={state})"
                )
            await asyncio.sleep(WIFI_STATUS_POLL_INTERVAL)

    async def disconnect(self) -> None:
        """Leave the network, no-op when not connected

        Every teardown step is attempted, the first failure is raised after.
        """
        if not self.connected:
            return
        network_id, local_ip = self.network_id, self.local_ip
        self.network_id = None
        self.local_ip = None

        steps = [("disconnect",), ("remove_network", network_id)]
        first_error: Optional[WifiStationError] = None
        if local_ip:
            try:
                await self._ip("addr", "del", local_ip, "dev", self.netif)
            except WifiStationError as err:
                self.log.warning("failed to remove %s from %s: %s", local_ip, self.netif, err)
                first_error = err
        for step in steps:
            try:
                await self._wpa_cli(*step)
            except WifiStationError as err:
                self.log.warning("wpa_cli %s on %s failed: %s", step[0], self.netif, err)
                if first_error is None:
                    first_error = err
        if first_error is not None:
            raise first_error
        self.log.info("left network on %s", self.netif)
