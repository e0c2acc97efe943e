import json
from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from cidsync.cli.commands import cli, format_duration, format_progress
from cidsync.core.client import AcquisitionError, FetchError
from cidsync.core.config import ConfigManager
from cidsync.core.transfer import TransferProgress, TransferStatus
from cidsync.core.transfer_log import RunLogEntry, TransferLogger

SRC = "http://src:5001"
DST = "http://dst:5001"
PREFIX = b"content of "


class FakeEndpoints:
    """Stands in for IPFSClient, one fake client per endpoint URL"""

    def __init__(self):
        self.clients = {}
        self.pins = []
        self.missing = set()
        self.list_error = None
        self.options = {}

    def _cat(self, cid):
        if cid in self.missing:
            raise FetchError("500 Internal Server Error: block not found")
        return PREFIX + cid.encode()

    def _add(self, data, version):
        return json.dumps({"Hash": data[len(PREFIX):].decode()}).encode()

    def _pin_ls(self):
        if self.list_error:
            raise self.list_error
        return iter(self.pins)

    def __call__(self, url, **kwargs):
        client = MagicMock()
        client.base_url = url
        client.__enter__.return_value = client
        client.cat.side_effect = self._cat
        client.add.side_effect = self._add
        client.pin_ls.side_effect = self._pin_ls
        self.clients[url] = client
        self.options[url] = kwargs
        return client


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def config_dir(tmp_path):
    return tmp_path / "config"


@pytest.fixture
def endpoints():
    fake = FakeEndpoints()
    with patch("cidsync.cli.commands.IPFSClient", side_effect=fake):
        yield fake


def invoke(runner, config_dir, *args):
    return runner.invoke(cli, ["--config-dir", str(config_dir), *args])


def test_sync_from_source_pins(runner, config_dir, endpoints):
    endpoints.pins = ["cid1", "cid2"]

    result = invoke(runner, config_dir, "sync", "-s", SRC, "-d", DST)

    assert result.exit_code == 0, result.output
    assert "Found 2 CIDs to sync" in result.output
    assert "Successfully synced 2 CIDs" in result.output
    assert endpoints.clients[DST].add.call_count == 2


def test_sync_from_file(runner, config_dir, endpoints, tmp_path):
    cid_file = tmp_path / "cids.txt"
    cid_file.write_text("cid1\ncid2\ncid3\n")

    result = invoke(runner, config_dir, "sync", "-s", SRC, "-d", DST, "-f", str(cid_file))

    assert result.exit_code == 0, result.output
    assert "Found 3 CIDs to sync" in result.output
    endpoints.clients[SRC].pin_ls.assert_not_called()


def test_sync_partial_failure_exits_zero(runner, config_dir, endpoints, tmp_path):
    endpoints.pins = ["cid1", "cid2"]
    endpoints.missing = {"cid2"}
    failed_file = tmp_path / "failed.txt"

    result = invoke(
        runner, config_dir, "sync", "-s", SRC, "-d", DST, "--failed-output", str(failed_file)
    )

    assert result.exit_code == 0, result.output
    assert "Failed to sync 1 CIDs" in result.output
    assert failed_file.read_text() == "cid2\n"
    assert endpoints.clients[DST].add.call_count == 1


def test_sync_records_run_log(runner, config_dir, endpoints):
    endpoints.pins = ["cid1", "cid2"]
    endpoints.missing = {"cid1"}

    result = invoke(runner, config_dir, "sync", "-s", SRC, "-d", DST, "-b", "1")

    assert result.exit_code == 0, result.output
    entries = TransferLogger(str(config_dir / "logs")).get_entries()
    assert len(entries) == 1
    assert entries[0].source == SRC
    assert (entries[0].total, entries[0].synced, entries[0].failed) == (2, 1, 1)
    assert entries[0].failed_cids == ["cid1"]
    assert entries[0].batch_size == 1


def test_sync_no_log(runner, config_dir, endpoints):
    endpoints.pins = ["cid1"]

    result = invoke(runner, config_dir, "sync", "-s", SRC, "-d", DST, "--no-log")

    assert result.exit_code == 0, result.output
    assert TransferLogger(str(config_dir / "logs")).get_log_dates() == []


def test_sync_acquisition_error_aborts(runner, config_dir, endpoints):
    endpoints.list_error = AcquisitionError("connection refused")

    result = invoke(runner, config_dir, "sync", "-s", SRC, "-d", DST)

    assert result.exit_code == 1
    assert "connection refused" in result.output
    endpoints.clients[DST].add.assert_not_called()


def test_sync_missing_file_aborts(runner, config_dir, endpoints, tmp_path):
    result = invoke(
        runner, config_dir, "sync", "-s", SRC, "-d", DST, "-f", str(tmp_path / "missing.txt")
    )

    assert result.exit_code == 1
    endpoints.clients[SRC].cat.assert_not_called()


def test_sync_uses_endpoint_aliases_and_defaults(runner, config_dir, endpoints):
    config = ConfigManager(config_dir)
    config.set_endpoint("old", SRC)
    config.set_endpoint("new", DST)
    config.set_default("batch_size", "7")
    config.set_default("retries", "2")
    endpoints.pins = ["cid1"]

    result = invoke(runner, config_dir, "sync", "-s", "old", "-d", "new")

    assert result.exit_code == 0, result.output
    assert endpoints.options[SRC]["max_connections"] == 7
    assert endpoints.options[SRC]["retries"] == 2
    assert endpoints.options[DST]["timeout"] is None


def test_sync_options_override_defaults(runner, config_dir, endpoints):
    ConfigManager(config_dir).set_default("retries", "2")
    endpoints.pins = ["cid1"]

    result = invoke(
        runner, config_dir, "sync", "-s", SRC, "-d", DST, "--retries", "0", "--timeout", "5"
    )

    assert result.exit_code == 0, result.output
    assert endpoints.options[SRC]["retries"] == 0
    assert endpoints.options[SRC]["timeout"] == 5.0


def test_sync_invalid_endpoint(runner, config_dir, endpoints):
    result = invoke(runner, config_dir, "sync", "-s", "not-a-url", "-d", DST)

    assert result.exit_code == 1
    assert "must start with http://" in result.output


def test_sync_requires_source(runner, config_dir):
    result = invoke(runner, config_dir, "sync", "-d", DST)

    assert result.exit_code != 0
    assert "--source" in result.output


def test_list_prints_cids(runner, config_dir, endpoints):
    endpoints.pins = ["cid1", "cid2"]

    result = invoke(runner, config_dir, "list", "-s", SRC)

    assert result.exit_code == 0, result.output
    assert "cid1" in result.output
    assert "cid2" in result.output
    assert "2 CIDs" in result.output


def test_list_to_file(runner, config_dir, endpoints, tmp_path):
    endpoints.pins = ["cid1", "cid2"]
    out = tmp_path / "cids.txt"

    result = invoke(runner, config_dir, "list", "-s", SRC, "-o", str(out))

    assert result.exit_code == 0, result.output
    assert out.read_text() == "cid1\ncid2\n"


def test_list_error(runner, config_dir, endpoints):
    endpoints.list_error = AcquisitionError("403 Forbidden: forbidden")

    result = invoke(runner, config_dir, "list", "-s", SRC)

    assert result.exit_code == 1
    assert "Failed to list CIDs" in result.output


def test_logs_empty(runner, config_dir):
    result = invoke(runner, config_dir, "logs")

    assert result.exit_code == 0
    assert "No sync logs found" in result.output


def test_logs_show_cids(runner, config_dir):
    TransferLogger(str(config_dir / "logs")).add_entry(RunLogEntry(
        timestamp=datetime.now().isoformat(),
        source=SRC,
        destination=DST,
        total=2,
        synced=1,
        failed=1,
        duration=3.2,
        batch_size=50,
        failed_cids=["cid2"],
    ))

    result = invoke(runner, config_dir, "logs", "--show-cids")

    assert result.exit_code == 0, result.output
    assert "Sync Logs for" in result.output
    assert "cid2" in result.output


def test_endpoint_commands(runner, config_dir):
    result = invoke(runner, config_dir, "endpoint", "add", "prod", "https://ipfs.example.com")
    assert result.exit_code == 0, result.output
    assert ConfigManager(config_dir).get_endpoints() == {"prod": "https://ipfs.example.com"}

    result = invoke(runner, config_dir, "endpoint", "list")
    assert "prod" in result.output

    result = invoke(runner, config_dir, "endpoint", "remove", "prod")
    assert result.exit_code == 0
    assert ConfigManager(config_dir).get_endpoints() == {}

    result = invoke(runner, config_dir, "endpoint", "remove", "prod")
    assert result.exit_code == 1


def test_endpoint_add_invalid_url(runner, config_dir):
    result = invoke(runner, config_dir, "endpoint", "add", "prod", "ipfs.example.com")

    assert result.exit_code == 1
    assert "Error" in result.output


def test_config_set_and_show(runner, config_dir):
    result = invoke(runner, config_dir, "config", "set", "batch_size", "20")
    assert result.exit_code == 0, result.output
    assert ConfigManager(config_dir).defaults.batch_size == 20

    result = invoke(runner, config_dir, "config", "show")
    assert "batch_size" in result.output
    assert "20" in result.output


def test_config_set_unknown_key(runner, config_dir):
    result = invoke(runner, config_dir, "config", "set", "colour", "blue")

    assert result.exit_code == 1
    assert "Unknown setting" in result.output


def test_format_duration():
    assert format_duration(1.5) == "1.5s"
    assert format_duration(75) == "1m 15s"
    assert format_duration(3725) == "1h 02m 05s"


def test_format_progress():
    progress = TransferProgress(
        sequence=3, total=10, cid="cid3", status=TransferStatus.SYNCED, synced=2, failed=1
    )

    assert format_progress(progress) == "3/10 synced: 2 failed: 1"


def test_sync_binary_file_aborts(runner, config_dir, endpoints, tmp_path):
    cid_file = tmp_path / "cids.txt"
    cid_file.write_bytes(b"\xff\xfe\x00bad\n")

    result = invoke(runner, config_dir, "sync", "-s", SRC, "-d", DST, "-f", str(cid_file))

    assert result.exit_code == 1
    assert "Failed to get the CIDs to sync" in result.output
    endpoints.clients[SRC].cat.assert_not_called()


def test_sync_with_invalid_config_uses_defaults(runner, config_dir, endpoints, tmp_path):
    config_dir.mkdir(parents=True)
    (config_dir / "config.json").write_text(json.dumps({"defaults": {"batch_size": "abc"}}))
    cid_file = tmp_path / "cids.txt"
    cid_file.write_text("cid1\n")

    result = invoke(runner, config_dir, "sync", "-s", SRC, "-d", DST, "-f", str(cid_file))

    assert result.exit_code == 0, result.output
    assert endpoints.options[SRC]["max_connections"] == 50
    assert "Successfully synced 1 CIDs" in result.output
