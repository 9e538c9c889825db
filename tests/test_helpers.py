# -*- coding: utf-8 -*-

import asyncio
import dataclasses
import json
import logging

import pytest

from pakerun import helpers
from pakerun.env import Env


@pytest.fixture
def parser():
    return helpers.setup_parser()


class TestHelpers:
    @pytest.mark.parametrize(
        "args,expected",
        [(["--logging", "debug"], 10), (["--logging", "warning"], 30), ([], 20)],
    )
    def test_logger(self, parser, args, expected, restore_logging):
        helpers.setup_logger(parser.parse_args(args))
        assert logging.root.level == expected

    def test_debug_flag_wins(self, parser, restore_logging):
        helpers.setup_logger(parser.parse_args(["--logging", "warning", "--debug"]))
        assert logging.root.level == logging.DEBUG

    def test_convert_configparser_to_dict(self, config_file):
        parser = helpers.load_config(config_file)
        parser["DEVICE"]["verbose"] = "yes"
        parser["DEVICE"]["baudrate"] = "1"
        config = helpers.convert_configparser_to_dict(parser)
        assert config["DEVICE"]["verbose"] == "yes"
        assert config["DEVICE"]["baudrate"] == "1"
        # interpolation is disabled, %% is kept as is
        assert config["INFRA"]["passphrase"] == "100%%secret"

    def test_setup_config(self, parser, config_file):
        config = helpers.setup_config(parser.parse_args(["--config", config_file]))
        assert config["DEVICE"]["serial"] == "/dev/ttyACM0"
        assert config["DEVICE"]["baudrate"] == 115200
        assert config["DIRECT"]["subnet"] == 24
        assert config["AUTHENTICATOR"]["command"] == "ndnob-pake-authenticator"
        assert config["CAPTURE"]["dumpcap"] == "dumpcap"
        assert helpers.validate(config)

    def test_setup_config_args_override(self, parser, config_file):
        args = parser.parse_args(
            [
                "--config",
                config_file,
                "--serial",
                "/dev/ttyUSB1",
                "--direct-netif",
                "wlan5",
                "--infra-netif",
                "wlan6",
            ]
        )
        config = helpers.setup_config(args)
        assert config["DEVICE"]["serial"] == "/dev/ttyUSB1"
        assert config["DIRECT"]["netif"] == "wlan5"
        assert config["INFRA"]["netif"] == "wlan6"

    def test_setup_config_without_file(self, parser, tmp_path, caplog):
        config = helpers.setup_config(
            parser.parse_args(["--config", str(tmp_path / "missing.ini")])
        )
        assert "can not find config" in caplog.text
        assert not helpers.check_config_missing(config)
        assert not helpers.validate(config)

    def test_validate_bad_address(self, parser, config_file, caplog):
        config = helpers.setup_config(parser.parse_args(["--config", config_file]))
        config["INFRA"]["gateway_ip"] = "10.0.0.300"
        assert not helpers.validate(config)

    def test_validate_bad_subnet(self, parser, config_file):
        config = helpers.setup_config(parser.parse_args(["--config", config_file]))
        config["DIRECT"]["subnet"] = "33"
        assert not helpers.validate(config)

    def test_missing_tools(self, mocker):
        mocker.patch(
            "pakerun.helpers.shutil.which",
            side_effect=lambda tool: None if tool == "dumpcap" else f"/usr/bin/{tool}",
        )
        assert helpers.missing_tools() == ["dumpcap"]

    def test_run_command_async(self):
        assert asyncio.run(helpers.run_command_async(["echo", "hello"])) == "hello\n"

    def test_run_command_async_error(self):
        with pytest.raises(helpers.CommandError) as excinfo:
            asyncio.run(helpers.run_command_async(["sh", "-c", "echo nope >&2; exit 4"]))
        assert excinfo.value.returncode == 4
        assert "nope" in str(excinfo.value)

    def test_run_command_async_no_check(self):
        out = asyncio.run(
            helpers.run_command_async(["sh", "-c", "echo partial; exit 1"], check=False)
        )
        assert out == "partial\n"

    def test_write_result_stdout(self, capsys):
        helpers.write_result({"program": ["direct-wifi"]})
        assert json.loads(capsys.readouterr().out) == {"program": ["direct-wifi"]}

    def test_write_result_file(self, tmp_path):
        path = tmp_path / "result.json"
        helpers.write_result({"program": ["direct-wifi"]}, str(path))
        assert json.loads(path.read_text()) == {"program": ["direct-wifi"]}


class TestEnv:
    def test_from_config(self, parser, config_file):
        config = helpers.setup_config(parser.parse_args(["--config", config_file]))
        env = Env.from_config(config)
        assert env.device_serial == "/dev/ttyACM0"
        assert env.device_baudrate == 115200
        assert env.direct_wifi_local_ip == "192.168.4.2/24"
        assert env.infra_wifi_passphrase == "100%%secret"
        assert env.network_credential == "lab-infra\n100%%secret\n10.0.0.1"

    def test_frozen(self, env):
        with pytest.raises(dataclasses.FrozenInstanceError):
            env.device_serial = "/dev/ttyACM1"

    def test_missing_key(self):
        with pytest.raises(KeyError):
            Env.from_config({"DEVICE": {}})

    @pytest.mark.parametrize("value", ["On", "yes", "off", "true", "0"])
    def test_truthy_looking_values_stay_strings(self, parser, tmp_path, config_ini, value):
        path = tmp_path / "config.ini"
        path.write_text(
            config_ini.replace("ssid = lab-infra", f"ssid = {value}").replace(
                "passphrase = 100%%secret", "passphrase = yes"
            )
        )
        config = helpers.setup_config(parser.parse_args(["--config", str(path)]))
        env = Env.from_config(config)
        assert env.infra_wifi_ssid == value
        assert env.network_credential == f"{value}\nyes\n10.0.0.1"
