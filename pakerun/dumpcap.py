# -*- coding: utf-8 -*-
#
# pakerun : a device provisioning test run orchestrator
# Copyright : (c) 2020-2021 Josh Schmelzle
# License : BSD-3-Clause
# Maintainer : josh@joshschmelzle.com

"""
pakerun.dumpcap
~~~~~~~~~~~~~~~

packet capture on one network interface with dumpcap
"""

# standard library imports
import asyncio
import logging
import os
import signal
import tempfile
from typing import Optional

# suppress scapy warnings
logging.getLogger("scapy.runtime").setLevel(logging.ERROR)

# third party imports
from scapy.all import Scapy_Exception, rdpcap  # type: ignore

# app imports
from .constants import DEFAULT_DUMPCAP, DUMPCAP_STOP_TIMEOUT


class DumpcapError(Exception):
    """Custom exception used when a capture cannot be started or stopped"""


class Dumpcap:
    """Capture session, starts capturing at construction"""

    def __init__(self, netif: str, binary: str = DEFAULT_DUMPCAP):
        self.log = logging.getLogger(self.__class__.__name__.lower())
        self.netif = netif
        self.binary = binary
        self.pcap: Optional[bytes] = None
        self.process: Optional[asyncio.subprocess.Process] = None
        fd, self.filename = tempfile.mkstemp(prefix=f"pakerun-{netif}-", suffix=".pcap")
        os.close(fd)
        self._closed = False
        self._start_error: Optional[Exception] = None
        self._start_task = asyncio.create_task(self._start())

    async def _start(self) -> None:
        cmd = [self.binary, "-q", "-P", "-i", self.netif, "-w", self.filename]
        self.log.debug("run: %s", " ".join(cmd))
        try:
            self.process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as err:
            self._start_error = err
            return
        self.log.info("capturing on %s (PID: %s)", self.netif, self.process.pid)

    async def close(self) -> None:
        """Stop capturing and load the captured bytes, safe to call more than once"""
        if self._closed:
            return
        self._closed = True
        try:
            await self._start_task
            if self._start_error is not None:
                raise DumpcapError(
                    f"cannot start {self.binary} on {self.netif}: {self._start_error}"
                )
            await self._stop()
            with open(self.filename, "rb") as _file:
                self.pcap = _file.read()
            self._summarize()
        finally:
            self._remove_file()

    async def _stop(self) -> None:
        process = self.process
        if process.returncode is None:
            self.log.debug("stopping capture on %s (PID: %s)", self.netif, process.pid)
            try:
                process.terminate()
            except ProcessLookupError:
                pass
        try:
            _, stderr = await asyncio.wait_for(
                process.communicate(), timeout=DUMPCAP_STOP_TIMEOUT
            )
        except asyncio.TimeoutError:
            self.log.warning(
                "dumpcap didn't stop after %ss, killing...", DUMPCAP_STOP_TIMEOUT
            )
            process.kill()
            _, stderr = await process.communicate()

        # 0 or one of our own signals means we stopped it
        if process.returncode not in (0, -signal.SIGTERM, -signal.SIGKILL):
            raise DumpcapError(
                f"dumpcap on {self.netif} exited with code {process.returncode}: "
                f"{stderr.decode('utf-8', errors='replace').strip()}"
            )

    def _remove_file(self) -> None:
        try:
            os.remove(self.filename)
        except FileNotFoundError:
            pass
        except OSError as err:
            self.log.warning("failed to remove %s: %s", self.filename, err)

    def _summarize(self) -> None:
        if not self.pcap:
            self.log.warning("no packets captured on %s", self.netif)
            return
        try:
            packets = rdpcap(self.filename)
        except Scapy_Exception as err:
            self.log.warning("captured file on %s is unreadable: %s", self.netif, err)
            return
        self.log.info(
            "captured %s packets (%s bytes) on %s",
            len(packets),
            len(self.pcap),
            self.netif,
        )
