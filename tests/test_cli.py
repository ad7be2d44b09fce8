"""
Tests for the command line front end.
"""
from contextlib import asynccontextmanager

import pytest

import cli
from scan_dispatcher import ChannelTransportFailure

from conftest import CERT_REFERENCE


@pytest.fixture
def connected(monkeypatch, fake_channel_factory):
    """Replace the scanner connection with a fake channel; returns (channel, settings seen)"""
    state = {"channel": fake_channel_factory(["Queued", "Started"]), "settings": []}

    @asynccontextmanager
    async def fake_connect(settings):
        state["settings"].append(settings)
        yield state["channel"]

    monkeypatch.setattr(cli, "connect_scanner", fake_connect)
    return state


def test_raw_options_only_include_typed_values():
    args = cli.build_parser(cli.LauncherSettings()).parse_args(
        ["start", "--tenant", "contoso.sharepoint.com", "--siteslist", "https://a", "https://b"]
    )
    assert cli.raw_options_from_args(args) == {
        "tenant": ["contoso.sharepoint.com"],
        "sitesList": ["https://a", "https://b"],
    }


def test_start_relays_status_lines(connected, capsys):
    exit_code = cli.main(["start", "--tenant", "contoso.sharepoint.com", "--authmode", "application",
                          "--certpath", CERT_REFERENCE])

    out = capsys.readouterr().out
    assert exit_code == cli.EXIT_OK
    assert "Status: Queued\nStatus: Started\n" in out

    request = connected["channel"].requests[0]
    assert request.tenant == "contoso.sharepoint.com"
    assert request.auth_mode == "Application"
    assert request.cert_path == CERT_REFERENCE


def test_invalid_options_never_contact_scanner(connected, capsys, sites_file):
    exit_code = cli.main(["start", "--siteslist", "https://a", "--sitesfile", str(sites_file)])

    out = capsys.readouterr().out
    assert exit_code == cli.EXIT_INVALID_OPTIONS
    assert "mutually exclusive" in out
    assert connected["settings"] == []


def test_transport_failure_is_reported(connected, capsys, fake_channel_factory):
    connected["channel"] = fake_channel_factory(["Queued"], error=ChannelTransportFailure("ReadError: reset"))

    exit_code = cli.main(["start"])

    out = capsys.readouterr().out
    assert exit_code == cli.EXIT_TRANSPORT_FAILURE
    assert "Status: Queued" in out
    assert "scanner channel failed" in out


def test_test_options_flag_adds_property(connected, capsys):
    exit_code = cli.main(["--enable-test-options", "start", "--testnumberofsites", "0"])

    assert exit_code == cli.EXIT_OK
    request = connected["channel"].requests[0]
    assert request.property_value("testnumberofsites") == "10"
    assert connected["settings"][0].enable_test_options is True


def test_test_options_rejected_when_disabled(connected, capsys):
    exit_code = cli.main(["start", "--testnumberofsites", "5"])

    assert exit_code == cli.EXIT_INVALID_OPTIONS
    assert "test options" in capsys.readouterr().out


def test_scanner_url_override(connected, capsys):
    cli.main(["--scanner-url", "http://scanner.internal:9000/", "start"])
    assert connected["settings"][0].scanner_url == "http://scanner.internal:9000"


def test_bad_environment_configuration(monkeypatch, capsys):
    monkeypatch.setenv("SCAN_LAUNCHER_CONNECT_TIMEOUT", "never")

    assert cli.main(["start"]) == cli.EXIT_INVALID_OPTIONS
    assert "Configuration error" in capsys.readouterr().out


def test_options_command_lists_flags(capsys):
    assert cli.main(["options"]) == cli.EXIT_OK

    out = capsys.readouterr().out
    assert "--siteslist" in out
    assert "--testnumberofsites" not in out
