# -*- coding: utf-8 -*-
#
# pakerun : a device provisioning test run orchestrator
# Copyright : (c) 2020-2021 Josh Schmelzle
# License : BSD-3-Clause
# Maintainer : josh@joshschmelzle.com

"""
pakerun.authenticator
~~~~~~~~~~~~~~~~~~~~~

wrapper around the PAKE authenticator program
"""

# standard library imports
import asyncio
import json
import logging
from typing import Callable, Dict, List, Optional

# app imports
from .constants import (
    AUTHENTICATOR_DEVICE_PORT,
    AUTHENTICATOR_STOP_TIMEOUT,
    DEFAULT_AUTHENTICATOR,
)


class AuthenticatorError(Exception):
    """Authenticator program failed"""


class Authenticator:
    """Runs the pairing and credential provisioning exchange with the device"""

    def __init__(
        self,
        device_ip: str,
        keychain: str,
        ca_profile: str,
        device_name: str,
        network_credential: str,
        pake_password: str,
        device_port: int = AUTHENTICATOR_DEVICE_PORT,
        mtu: Optional[int] = None,
        command: str = DEFAULT_AUTHENTICATOR,
        on_line: Optional[Callable[[str], None]] = None,
    ):
        """
        Spawn the authenticator program.

        Args:
            device_ip: address of the device on the direct network
            keychain: keychain holding the authenticator's certificate
            ca_profile: name of the CA profile the device is enrolled into
            device_name: name assigned to the device
            network_credential: infrastructure ssid, passphrase and gateway ip, newline separated
            pake_password: pairing password announced by the device
            device_port: udp port of the device
            mtu: optional face MTU override
            command: authenticator program
            on_line: receives each log line of the program
        """
        self.log = logging.getLogger(self.__class__.__name__.lower())
        self.on_line = on_line
        self.argv = [
            command,
            "--device-ip",
            device_ip,
            "--device-port",
            str(device_port),
        ]
        if mtu is not None:
            self.argv += ["--mtu", str(mtu)]
        self.argv += [
            "--keychain",
            keychain,
            "--ca-profile",
            ca_profile,
            "--device-name",
            device_name,
            "--network-credential",
            network_credential,
            "--pake-password",
            pake_password,
        ]
        self.result: Optional[Dict] = None
        self.process: Optional[asyncio.subprocess.Process] = None
        self._error: "asyncio.Future[Exception]" = (
            asyncio.get_running_loop().create_future()
        )
        self._closed = False
        self._stop_task: Optional[asyncio.Task] = None
        self._task = asyncio.create_task(self._run())

    async def error(self) -> Exception:
        """Wait for the terminal error of the authenticator"""
        return await asyncio.shield(self._error)

    def _set_error(self, error: Exception) -> None:
        if self._closed or self._error.done():
            self.log.debug("dropping authenticator error: %s", error)
            return
        self._error.set_result(error)

    async def _run(self) -> None:
        if self._closed:
            return
        # the pake password stays out of the log
        self.log.debug("spawn: %s", " ".join(self.argv[:-1] + ["***"]))
        try:
            self.process = await asyncio.create_subprocess_exec(
                *self.argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as err:
            self._set_error(AuthenticatorError(f"cannot start {self.argv[0]}: {err}"))
            return

        if self._closed:
            self._stop_task = asyncio.create_task(self._stop())

        await asyncio.gather(
            self._read_lines(self.process.stdout, self._handle_stdout),
            self._read_lines(self.process.stderr, self._emit),
        )
        returncode = await self.process.wait()
        self.log.debug("authenticator exited with code %s", returncode)
        if returncode != 0:
            self._set_error(
                AuthenticatorError(f"authenticator exited with code {returncode}")
            )

    async def _read_lines(self, stream, handle: Callable[[str], None]) -> None:
        while True:
            try:
                raw = await stream.readline()
            except ValueError as err:
                # line longer than the stream limit, the rest is unusable
                self._set_error(AuthenticatorError(f"unreadable output: {err}"))
                while await stream.read(65536):
                    pass
                return
            if not raw:
                return
            line = raw.decode("utf-8", errors="replace").strip()
            if line:
                handle(line)

    def _handle_stdout(self, line: str) -> None:
        try:
            record = json.loads(line)
        except ValueError:
            record = None
        if isinstance(record, dict):
            self.result = record
        else:
            self._emit(line)

    def _emit(self, line: str) -> None:
        if self.on_line:
            self.on_line(line)

    async def _stop(self) -> None:
        process = self.process
        if process.returncode is None:
            self.log.debug("terminating authenticator (PID: %s)", process.pid)
            try:
                process.terminate()
            except ProcessLookupError:
                pass
        try:
            await asyncio.wait_for(process.wait(), timeout=AUTHENTICATOR_STOP_TIMEOUT)
        except asyncio.TimeoutError:
            self.log.warning(
                "authenticator didn't stop after %ss, killing...",
                AUTHENTICATOR_STOP_TIMEOUT,
            )
            process.kill()
            await process.wait()

    def close(self) -> None:
        """Stop the authenticator, safe to call more than once

        A program that ignores SIGTERM is killed after AUTHENTICATOR_STOP_TIMEOUT.
        """
        if self._closed:
            return
        self._closed = True
        # a spawn in progress stops the program itself once it sees _closed
        if self.process is not None and self.process.returncode is None:
            self._stop_task = asyncio.create_task(self._stop())

    @property
    def args(self) -> List[str]:
        """Arguments passed to the authenticator program"""
        return self.argv[1:]
