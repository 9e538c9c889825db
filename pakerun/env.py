# -*- coding: utf-8 -*-
#
# pakerun : a device provisioning test run orchestrator
# Copyright : (c) 2020-2021 Josh Schmelzle
# License : BSD-3-Clause
# Maintainer : josh@joshschmelzle.com

"""
pakerun.env
~~~~~~~~~~~

fixed identifiers, paths and credentials used by a run
"""

from dataclasses import dataclass
from typing import Dict

from .constants import (
    DEFAULT_AUTHENTICATOR,
    DEFAULT_BAUDRATE,
    DEFAULT_DUMPCAP,
    DEFAULT_SUBNET,
)


@dataclass(frozen=True)
class Env:
    """Run environment, read once from the configuration"""

    device_serial: str
    direct_wifi_netif: str
    direct_wifi_wpa_ctrl: str
    direct_wifi_ssid: str
    direct_wifi_passphrase: str
    direct_wifi_auth_ip: str
    direct_wifi_device_ip: str
    infra_wifi_netif: str
    infra_wifi_ssid: str
    infra_wifi_passphrase: str
    infra_wifi_gateway_ip: str
    keychain: str
    ca_profile: str
    network_prefix: str
    device_baudrate: int = DEFAULT_BAUDRATE
    direct_wifi_subnet: int = DEFAULT_SUBNET
    authenticator_command: str = DEFAULT_AUTHENTICATOR
    dumpcap: str = DEFAULT_DUMPCAP

    @classmethod
    def from_config(cls, config: Dict) -> "Env":
        """Build from the nested dict returned by helpers.setup_config"""
        device = config.get("DEVICE", {})
        direct = config.get("DIRECT", {})
        infra = config.get("INFRA", {})
        authenticator = config.get("AUTHENTICATOR", {})
        capture = config.get("CAPTURE", {})
        return cls(
            device_serial=str(device["serial"]),
            device_baudrate=int(device.get("baudrate", DEFAULT_BAUDRATE)),
            direct_wifi_netif=str(direct["netif"]),
            direct_wifi_wpa_ctrl=str(direct["wpa_ctrl"]),
            direct_wifi_ssid=str(direct["ssid"]),
            direct_wifi_passphrase=str(direct["passphrase"]),
            direct_wifi_auth_ip=str(direct["auth_ip"]),
            direct_wifi_subnet=int(direct.get("subnet", DEFAULT_SUBNET)),
            direct_wifi_device_ip=str(direct["device_ip"]),
            infra_wifi_netif=str(infra["netif"]),
            infra_wifi_ssid=str(infra["ssid"]),
            infra_wifi_passphrase=str(infra["passphrase"]),
            infra_wifi_gateway_ip=str(infra["gateway_ip"]),
            keychain=str(authenticator["keychain"]),
            ca_profile=str(authenticator["ca_profile"]),
            network_prefix=str(authenticator["network_prefix"]),
            authenticator_command=str(
                authenticator.get("command", DEFAULT_AUTHENTICATOR)
            ),
            dumpcap=str(capture.get("dumpcap", DEFAULT_DUMPCAP)),
        )

    @property
    def direct_wifi_local_ip(self) -> str:
        """Static address with prefix length for the direct netif"""
        return f"{self.direct_wifi_auth_ip}/{self.direct_wifi_subnet}"

    @property
    def network_credential(self) -> str:
        """Infrastructure credential handed to the device, newline separated"""
        return "\n".join(
            [
                self.infra_wifi_ssid,
                self.infra_wifi_passphrase,
                self.infra_wifi_gateway_ip,
            ]
        )
