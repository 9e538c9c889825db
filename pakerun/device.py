# -*- coding: utf-8 -*-
#
# pakerun : a device provisioning test run orchestrator
# Copyright : (c) 2020-2021 Josh Schmelzle
# License : BSD-3-Clause
# Maintainer : josh@joshschmelzle.com

"""
pakerun.device
~~~~~~~~~~~~~~

serial link to the device under test

The firmware prints one record per line. Records start with ``@``::

    @program direct-wifi
    @password 4a1d0c
    @state WaitDirectConnect
    @result {"pake": 1830}
    @error pake failed

Every other line is debug output and is handed to ``on_line``.
"""

# standard library imports
import asyncio
import json
import logging
from enum import IntEnum
from typing import Callable, Dict, List, Optional

# third party imports
import serial_asyncio  # type: ignore

# app imports
from .constants import (
    DEFAULT_BAUDRATE,
    DEVICE_LINE_ERROR,
    DEVICE_LINE_PASSWORD,
    DEVICE_LINE_PREFIX,
    DEVICE_LINE_PROGRAM,
    DEVICE_LINE_RESULT,
    DEVICE_LINE_STATE,
)


class AppState(IntEnum):
    """Device lifecycle checkpoints, in protocol order"""

    Idle = 0
    WaitDirectConnect = 1
    WaitPake = 2
    WaitDirectDisconnect = 3
    WaitInfraConnect = 4
    Final = 5


class DeviceError(Exception):
    """Terminal error reported by or about the device"""


class Device:
    """Line oriented serial link to the device"""

    def __init__(
        self,
        serial_port: str,
        baudrate: int = DEFAULT_BAUDRATE,
        on_line: Optional[Callable[[str], None]] = None,
    ):
        self.log = logging.getLogger(self.__class__.__name__.lower())
        self.serial_port = serial_port
        self.baudrate = baudrate
        self.on_line = on_line
        self.program: List[str] = []
        self.password = ""
        self.result: Dict = {}
        self.states: "asyncio.Queue[AppState]" = asyncio.Queue()
        self._error: "asyncio.Future[Exception]" = (
            asyncio.get_running_loop().create_future()
        )
        self._closed = False
        self._writer = None
        self._reader_task = asyncio.create_task(self._run_reader())

    async def error(self) -> Exception:
        """Wait for the terminal error of this link"""
        return await asyncio.shield(self._error)

    def _set_error(self, error: Exception) -> None:
        if self._closed or self._error.done():
            self.log.debug("dropping device error: %s", error)
            return
        self._error.set_result(error)

    async def _run_reader(self) -> None:
        try:
            reader, self._writer = await serial_asyncio.open_serial_connection(
                url=self.serial_port, baudrate=self.baudrate
            )
        except Exception as err:
            self._set_error(DeviceError(f"cannot open {self.serial_port}: {err}"))
            return
        self.log.debug("opened %s at %s baud", self.serial_port, self.baudrate)

        while not self._closed:
            try:
                line = await reader.readline()
            except Exception as err:
                self._set_error(DeviceError(f"read from {self.serial_port}: {err}"))
                return
            if not line:
                self._set_error(DeviceError(f"{self.serial_port} closed unexpectedly"))
                return
            self.handle_line(line.decode("latin1").strip())

    def handle_line(self, line: str) -> None:
        """Parse one line received from the firmware"""
        if not line.startswith(DEVICE_LINE_PREFIX):
            if line and self.on_line:
                self.on_line(line)
            return

        key, _, value = line[len(DEVICE_LINE_PREFIX) :].partition(" ")
        value = value.strip()
        if key == DEVICE_LINE_STATE:
            try:
                state = AppState[value]
            except KeyError:
                self.log.debug("ignoring unknown state %s", value)
                return
            self.states.put_nowait(state)
        elif key == DEVICE_LINE_PROGRAM:
            self.program = value.split()
        elif key == DEVICE_LINE_PASSWORD:
            self.password = value
        elif key == DEVICE_LINE_RESULT:
            try:
                self.result = json.loads(value)
            except ValueError as err:
                self._set_error(DeviceError(f"malformed result record: {err}"))
        elif key == DEVICE_LINE_ERROR:
            self._set_error(DeviceError(value or "device reported an error"))
        else:
            self.log.debug("ignoring unknown record %s", key)

    def close(self) -> None:
        """Close the serial link, safe to call more than once"""
        if self._closed:
            return
        self._closed = True
        if self._writer is not None:
            transport = getattr(self._writer, "transport", None)
            if transport is not None:
                transport.abort()
            else:
                self._writer.close()
        if not self._reader_task.done():
            self._reader_task.cancel()
        self.log.debug("closed %s", self.serial_port)
