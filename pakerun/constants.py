# -*- coding: utf-8 -*-
#
# pakerun : a device provisioning test run orchestrator
# Copyright : (c) 2020-2021 Josh Schmelzle
# License : BSD-3-Clause
# Maintainer : josh@joshschmelzle.com

"""
pakerun.constants
~~~~~~~~~~~~~~~~~

define constant values for app
"""

CONFIG_FILE = "/etc/pakerun/config.ini"

REQUIRED_TOOLS = ["wpa_cli", "ip", "dumpcap"]

DEFAULT_BAUDRATE = 115200
DEFAULT_SUBNET = 24
DEFAULT_DUMPCAP = "dumpcap"
DEFAULT_AUTHENTICATOR = "ndnob-pake-authenticator"

# program descriptor tags announced by the device
DIRECT_WIFI = "direct-wifi"
DIRECT_BLE = "direct-ble"

AUTHENTICATOR_DEVICE_PORT = 6363  # udp port of the device's forwarder face

DIRECT_AP_SETTLE_DELAY = 1.0  # seconds for the device AP to come up
CAPTURE_SETTLE_DELAY = 0.5  # seconds for dumpcap to attach to the netif

WIFI_CONNECT_TIMEOUT = 30.0
WIFI_STATUS_POLL_INTERVAL = 0.5

DUMPCAP_STOP_TIMEOUT = 5.0
AUTHENTICATOR_STOP_TIMEOUT = 5.0

# serial line prefixes written by the device firmware
DEVICE_LINE_PREFIX = "@"
DEVICE_LINE_STATE = "state"
DEVICE_LINE_PROGRAM = "program"
DEVICE_LINE_PASSWORD = "password"
DEVICE_LINE_RESULT = "result"
DEVICE_LINE_ERROR = "error"
