# -*- coding: utf-8 -*-
#
# pakerun : a device provisioning test run orchestrator
# Copyright : (c) 2020-2021 Josh Schmelzle
# License : BSD-3-Clause
# Maintainer : josh@joshschmelzle.com

"""
pakerun.run
~~~~~~~~~~~

perform a single provisioning run against the device

The device announces its lifecycle states over the serial link. Each state
triggers one action:

    WaitDirectConnect     join the device's own network, capture on it
    WaitPake              start the authenticator
    WaitDirectDisconnect  leave the device's network
    WaitInfraConnect      capture on the infrastructure network
    Final                 release everything and report the result

The run settles exactly once. Whoever settles it first runs the cleanup
before the caller sees the outcome.
"""

# standard library imports
import asyncio
import logging
import time
from base64 import b64encode
from contextlib import contextmanager
from dataclasses import dataclass
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional

# app imports
from .authenticator import Authenticator
from .constants import (
    AUTHENTICATOR_DEVICE_PORT,
    CAPTURE_SETTLE_DELAY,
    DIRECT_AP_SETTLE_DELAY,
    DIRECT_BLE,
    DIRECT_WIFI,
)
from .device import AppState, Device
from .dumpcap import Dumpcap
from .env import Env
from .wifi_station import WifiStation


class RunError(Exception):
    """Base exception for a failed run"""


class UnknownDirectMethodError(RunError):
    """Device advertises no known direct connection method"""


class DirectMethodNotImplementedError(RunError, NotImplementedError):
    """Device asks for a direct connection method we do not support"""


class ProtocolViolationError(RunError):
    """Device delivered a state twice or out of order"""


class RunCancelledError(RunError):
    """The task waiting on the run was cancelled"""


class CollaboratorError(RunError):
    """Error raised by the device, authenticator, wifi station or a capture"""

    def __init__(self, origin: str, error: BaseException):
        super().__init__(f"{origin}: {error}")
        self.origin = origin
        self.error = error
        self.__cause__ = error


@contextmanager
def collaborator(origin: str):
    """Wrap exceptions raised by a collaborator with its origin"""
    try:
        yield
    except RunError:
        raise
    except Exception as err:
        raise CollaboratorError(origin, err)


@dataclass
class RunResult:
    """Outcome of a successful run"""

    program: List[str]
    device: Dict[str, Any]
    authenticator: Optional[Dict[str, Any]] = None
    direct_dump: Optional[str] = None
    infra_dump: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"program": self.program, "device": self.device}
        if self.authenticator is not None:
            out["authenticator"] = self.authenticator
        if self.direct_dump is not None:
            out["directDump"] = self.direct_dump
        if self.infra_dump is not None:
            out["infraDump"] = self.infra_dump
        return out


def encode_dump(dump: Optional[Dumpcap]) -> Optional[str]:
    """Base64 of the captured bytes, None when no capture was taken"""
    if dump is None or dump.pcap is None:
        return None
    return b64encode(dump.pcap).decode()


class Run:
    """Perform a single run of the experiment"""

    direct_ap_settle_delay = DIRECT_AP_SETTLE_DELAY
    capture_settle_delay = CAPTURE_SETTLE_DELAY

    def __init__(self, env: Env):
        self.env = env
        self.log = logging.getLogger(__name__)
        self._outcome: "Optional[asyncio.Future[RunResult]]" = None
        self._settled = False
        self._tasks: List[asyncio.Task] = []
        self._seen: List[AppState] = []
        self._device: Optional[Device] = None
        self._authenticator: Optional[Authenticator] = None
        self._direct_wifi: Optional[WifiStation] = None
        self._direct_dump: Optional[Dumpcap] = None
        self._infra_dump: Optional[Dumpcap] = None
        self._actions: Dict[AppState, Callable[[], Awaitable[None]]] = {
            AppState.WaitDirectConnect: self._direct_connect,
            AppState.WaitPake: self._start_authenticator,
            AppState.WaitDirectDisconnect: self._direct_disconnect,
            AppState.WaitInfraConnect: self._start_infra_dump,
            AppState.Final: self._finish,
        }

    async def run(self, logger: Optional[logging.Logger] = None) -> RunResult:
        """
        Run the experiment once.

        Args:
            logger: receives progress and the device/authenticator log lines

        Returns:
            RunResult: program, device and authenticator results, captures

        Raises:
            RunError: the run failed, cleanup has already completed
        """
        if self._outcome is not None:
            raise RuntimeError("a Run can only be started once")
        if logger is not None:
            self.log = logger
        self._outcome = asyncio.get_running_loop().create_future()

        try:
            with collaborator("device"):
                self._init_device()
        except CollaboratorError as err:
            await self._settle(error=err)
        else:
            self._supervise(self._dispatch())

        try:
            return await asyncio.shield(self._outcome)
        except asyncio.CancelledError:
            if not self._settled:
                await self._settle(error=RunCancelledError("run was cancelled"))
            elif not self._outcome.done():
                await asyncio.wait([self._outcome])
            if not self._outcome.cancelled():
                self._outcome.exception()
            raise
        finally:
            self._retire_tasks()

    def _supervise(self, coro) -> None:
        self._tasks.append(asyncio.create_task(coro))

    def _retire_tasks(self) -> None:
        current = asyncio.current_task()
        for task in self._tasks:
            if task is not current and not task.done():
                task.cancel()

    def _forward(self, origin: str, line: str) -> None:
        self.log.debug("%s: %s", origin, line)

    async def _watch(self, origin: str, source) -> None:
        error = await source.error()
        await self._settle(error=CollaboratorError(origin, error))

    def _init_device(self) -> None:
        self._device = Device(
            self.env.device_serial,
            self.env.device_baudrate,
            on_line=partial(self._forward, "device"),
        )
        self._supervise(self._watch("device", self._device))

    async def _dispatch(self) -> None:
        while not self._settled:
            state = await self._device.states.get()
            try:
                await self._handle_state(state)
            except Exception as err:
                await self._settle(error=err)

    async def _handle_state(self, state: AppState) -> None:
        action = self._actions.get(state)
        if action is None:
            self.log.debug("ignoring device state %s", state.name)
            return
        if self._seen and state <= self._seen[-1]:
            if state in self._seen:
                raise ProtocolViolationError(f"device repeated state {state.name}")
            raise ProtocolViolationError(
                f"device state {state.name} arrived after {self._seen[-1].name}"
            )
        self._seen.append(state)
        self.log.info("device state %s", state.name)
        await action()

    async def _direct_connect(self) -> None:
        program = self._device.program
        if DIRECT_WIFI in program:
            await asyncio.sleep(self.direct_ap_settle_delay)
            with collaborator("direct capture"):
                self._direct_dump = Dumpcap(self.env.direct_wifi_netif, self.env.dumpcap)
            await asyncio.sleep(self.capture_settle_delay)

            self._direct_wifi = WifiStation()
            with collaborator("direct wifi"):
                await self._direct_wifi.connect(
                    ctrl=self.env.direct_wifi_wpa_ctrl,
                    netif=self.env.direct_wifi_netif,
                    ssid=self.env.direct_wifi_ssid,
                    passphrase=self.env.direct_wifi_passphrase,
                    local_ip=self.env.direct_wifi_local_ip,
                )
        elif DIRECT_BLE in program:
            raise DirectMethodNotImplementedError(f"{DIRECT_BLE} is not implemented")
        else:
            raise UnknownDirectMethodError(
                f"unknown direct connection method in program {program}"
            )

    def _device_name(self) -> str:
        return f"{self.env.network_prefix}/d{int(time.time() * 1000)}"

    async def _start_authenticator(self) -> None:
        with collaborator("authenticator"):
            self._authenticator = Authenticator(
                device_ip=self.env.direct_wifi_device_ip,
                device_port=AUTHENTICATOR_DEVICE_PORT,
                mtu=None,
                keychain=self.env.keychain,
                ca_profile=self.env.ca_profile,
                device_name=self._device_name(),
                network_credential=self.env.network_credential,
                pake_password=self._device.password,
                command=self.env.authenticator_command,
                on_line=partial(self._forward, "authenticator"),
            )
        self._supervise(self._watch("authenticator", self._authenticator))

    async def _direct_disconnect(self) -> None:
        if self._direct_wifi is not None:
            with collaborator("direct wifi"):
                await self._direct_wifi.disconnect()

    async def _start_infra_dump(self) -> None:
        with collaborator("infra capture"):
            self._infra_dump = Dumpcap(self.env.infra_wifi_netif, self.env.dumpcap)

    async def _finish(self) -> None:
        await self._settle(result_factory=self._build_result)

    def _build_result(self) -> RunResult:
        return RunResult(
            program=list(self._device.program),
            device=self._device.result,
            authenticator=(
                self._authenticator.result if self._authenticator is not None else None
            ),
            direct_dump=encode_dump(self._direct_dump),
            infra_dump=encode_dump(self._infra_dump),
        )

    async def _settle(
        self,
        result_factory: Optional[Callable[[], RunResult]] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        if self._settled:
            if error is not None:
                self.log.warning("run already settled, ignoring: %s", error)
            return
        self._settled = True
        self._retire_tasks()

        try:
            await self._cleanup()
        except CollaboratorError as err:
            if error is None:
                error = err
            else:
                self.log.warning("cleanup failed after run error: %s", err)

        if error is not None:
            self.log.error("run failed: %s", error)
            self._outcome.set_exception(error)
        else:
            try:
                result = result_factory()
            except Exception as err:
                self.log.error("cannot assemble run result: %s", err)
                self._outcome.set_exception(err)
                return
            self.log.info("run finished")
            self._outcome.set_result(result)

    async def _cleanup(self) -> None:
        self.log.debug("cleaning up")
        first_error: Optional[CollaboratorError] = None
        for origin, step in (
            ("device", self._close_device),
            ("authenticator", self._close_authenticator),
            ("direct wifi", self._disconnect_direct_wifi),
            ("direct capture", self._close_direct_dump),
            ("infra capture", self._close_infra_dump),
        ):
            try:
                await step()
            except Exception as err:
                self.log.warning("cleanup of %s failed: %s", origin, err)
                if first_error is None:
                    first_error = CollaboratorError(origin, err)
        if first_error is not None:
            raise first_error

    async def _close_device(self) -> None:
        if self._device is not None:
            self._device.close()

    async def _close_authenticator(self) -> None:
        if self._authenticator is not None:
            self._authenticator.close()

    async def _disconnect_direct_wifi(self) -> None:
        if self._direct_wifi is not None:
            await self._direct_wifi.disconnect()

    async def _close_direct_dump(self) -> None:
        if self._direct_dump is not None:
            await self._direct_dump.close()

    async def _close_infra_dump(self) -> None:
        if self._infra_dump is not None:
            await self._infra_dump.close()
