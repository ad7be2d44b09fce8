"""
Pytest configuration and fixtures.

Puts the repository root on sys.path so the launcher modules import without
an editable install.
"""
import sys
from pathlib import Path

import pytest

repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from scan_dispatcher import StatusUpdate  # noqa: E402

CERT_REFERENCE = "My|LocalMachine|3FG496B468BE3828E2359A8A6F092FB701C8CDB1"


@pytest.fixture(autouse=True)
def launcher_env(monkeypatch):
    """Isolate tests from the caller's launcher settings and keep log files out of the tree."""
    for name in ("SCAN_LAUNCHER_URL", "SCAN_LAUNCHER_TEST_OPTIONS",
                 "SCAN_LAUNCHER_CONNECT_TIMEOUT", "SCAN_LAUNCHER_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("SCAN_LAUNCHER_LOG_FILE", "")
    # wide rich console so messages are not wrapped
    monkeypatch.setenv("COLUMNS", "200")


@pytest.fixture
def sites_file(tmp_path: Path) -> Path:
    path = tmp_path / "sites.txt"
    path.write_text("https://contoso.sharepoint.com/sites/a\n", encoding="utf-8")
    return path


@pytest.fixture
def pfx_file(tmp_path: Path) -> Path:
    path = tmp_path / "scan.pfx"
    path.write_bytes(b"\x30\x82")
    return path


class FakeChannel:
    """Scanner channel that replays canned statuses, optionally failing afterwards."""

    def __init__(self, statuses=(), error=None):
        self.statuses = list(statuses)
        self.error = error
        self.requests = []

    async def start(self, request):
        self.requests.append(request)
        for status in self.statuses:
            yield StatusUpdate(status)
        if self.error is not None:
            raise self.error


@pytest.fixture
def fake_channel_factory():
    return FakeChannel
