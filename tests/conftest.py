# -*- coding: utf-8 -*-
"""
Shared pytest fixtures for pakerun tests
"""

import asyncio
import logging

import pytest

from pakerun.device import AppState
from pakerun.env import Env
from pakerun.run import Run

CONFIG_INI = """
[DEVICE]
serial = /dev/ttyACM0

[DIRECT]
netif = wlan1
wpa_ctrl = /run/wpa_supplicant
ssid = ndnob-device
passphrase = device-pass
auth_ip = 192.168.4.2
device_ip = 192.168.4.1

[INFRA]
netif = wlan2
ssid = lab-infra
passphrase = 100%%secret
gateway_ip = 10.0.0.1

[AUTHENTICATOR]
keychain = /var/lib/pakerun/keychain
ca_profile = /lab/32=PROFILE
network_prefix = /lab
"""

HAPPY_PATH = [
    AppState.WaitDirectConnect,
    AppState.WaitPake,
    AppState.WaitDirectDisconnect,
    AppState.WaitInfraConnect,
    AppState.Final,
]


class FakeDevice:
    def __init__(self, serial_port, baudrate, on_line, states, program, error=None):
        self.serial_port = serial_port
        self.baudrate = baudrate
        self.on_line = on_line
        self.program = list(program)
        self.password = "4a1d0c"
        self.result = {"pake": 1830, "infra": 2410}
        self.states = asyncio.Queue()
        for state in states:
            self.states.put_nowait(state)
        self._error = asyncio.get_running_loop().create_future()
        if error is not None:
            self._error.set_result(error)
        self.close_count = 0

    async def error(self):
        return await asyncio.shield(self._error)

    def close(self):
        self.close_count += 1


class FakeAuthenticator:
    def __init__(self, error=None, **kwargs):
        self.kwargs = kwargs
        self.result = {"confirmed": True}
        self._error = asyncio.get_running_loop().create_future()
        if error is not None:
            self._error.set_result(error)
        self.close_count = 0

    async def error(self):
        return await asyncio.shield(self._error)

    def close(self):
        self.close_count += 1


class FakeWifiStation:
    def __init__(self, connect_error=None, disconnect_error=None, hang=False):
        self.connect_error = connect_error
        self.disconnect_error = disconnect_error
        self.hang = hang
        self.connect_calls = []
        self.disconnect_count = 0
        self.connecting = asyncio.Event()

    async def connect(self, **kwargs):
        self.connect_calls.append(kwargs)
        self.connecting.set()
        if self.hang:
            await asyncio.Event().wait()
        if self.connect_error is not None:
            raise self.connect_error

    async def disconnect(self):
        self.disconnect_count += 1
        if self.disconnect_error is not None:
            raise self.disconnect_error


class FakeDumpcap:
    def __init__(self, netif, binary, close_error=None):
        self.netif = netif
        self.binary = binary
        self.close_error = close_error
        self.pcap = None
        self.close_count = 0

    async def close(self):
        self.close_count += 1
        if self.close_error is not None:
            raise self.close_error
        self.pcap = f"pcap-{self.netif}".encode()


class Collaborators:
    """Replaces the collaborators used by pakerun.run with fakes"""

    def __init__(self, mocker):
        self.states = list(HAPPY_PATH)
        self.program = ["direct-wifi"]
        self.device_error = None
        self.device_lines = []
        self.authenticator_error = None
        self.connect_error = None
        self.disconnect_error = None
        self.hang_connect = False
        self.dump_close_errors = {}

        self.devices = []
        self.authenticators = []
        self.stations = []
        self.dumps = []

        mocker.patch("pakerun.run.Device", side_effect=self._device)
        mocker.patch("pakerun.run.Authenticator", side_effect=self._authenticator)
        mocker.patch("pakerun.run.WifiStation", side_effect=self._station)
        mocker.patch("pakerun.run.Dumpcap", side_effect=self._dumpcap)
        mocker.patch.object(Run, "direct_ap_settle_delay", 0)
        mocker.patch.object(Run, "capture_settle_delay", 0)

    def _device(self, serial_port, baudrate, on_line=None):
        device = FakeDevice(
            serial_port,
            baudrate,
            on_line,
            self.states,
            self.program,
            error=self.device_error,
        )
        for line in self.device_lines:
            on_line(line)
        self.devices.append(device)
        return device

    def _authenticator(self, **kwargs):
        authenticator = FakeAuthenticator(error=self.authenticator_error, **kwargs)
        self.authenticators.append(authenticator)
        return authenticator

    def _station(self):
        station = FakeWifiStation(
            connect_error=self.connect_error,
            disconnect_error=self.disconnect_error,
            hang=self.hang_connect,
        )
        self.stations.append(station)
        return station

    def _dumpcap(self, netif, binary):
        dump = FakeDumpcap(netif, binary, close_error=self.dump_close_errors.get(netif))
        self.dumps.append(dump)
        return dump

    @property
    def device(self):
        return self.devices[0]

    def dump(self, netif):
        return next(dump for dump in self.dumps if dump.netif == netif)


@pytest.fixture
def env():
    return Env(
        device_serial="/dev/ttyACM0",
        direct_wifi_netif="wlan1",
        direct_wifi_wpa_ctrl="/run/wpa_supplicant",
        direct_wifi_ssid="ndnob-device",
        direct_wifi_passphrase="device-pass",
        direct_wifi_auth_ip="192.168.4.2",
        direct_wifi_device_ip="192.168.4.1",
        infra_wifi_netif="wlan2",
        infra_wifi_ssid="lab-infra",
        infra_wifi_passphrase="infra-pass",
        infra_wifi_gateway_ip="10.0.0.1",
        keychain="/var/lib/pakerun/keychain",
        ca_profile="/lab/32=PROFILE",
        network_prefix="/lab",
    )


@pytest.fixture
def collaborators(mocker):
    return Collaborators(mocker)


@pytest.fixture
def restore_logging():
    """setup_logger reconfigures the root logger, put it back afterwards"""
    root = logging.getLogger()
    level, handlers = root.level, list(root.handlers)
    yield
    root.setLevel(level)
    root.handlers[:] = handlers


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.ini"
    path.write_text(CONFIG_INI)
    return str(path)


@pytest.fixture
def config_ini():
    return CONFIG_INI
