"""Tests for pfztp.cli module."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from pfztp import cli
from pfztp.exceptions import ConfigurationError, MissingDependency, NotReady, UsageError
from pfztp.models import ReconcileReport


@pytest.fixture
def env_file(tmp_path, clean_env):
    path = tmp_path / ".env"
    path.write_text(f"WORK_ROOT={tmp_path / 'homelab'}\nPF_VM_NAME=edge\n")
    return path


class TestParseOverrides:
    def test_pairs(self):
        assert cli.parse_overrides(["PF_VCPUS=4", "PF_ISO_PATH="]) == {"PF_VCPUS": "4", "PF_ISO_PATH": ""}

    def test_value_may_contain_equals(self):
        assert cli.parse_overrides(["PF_WAN_DEV=a=b"]) == {"PF_WAN_DEV": "a=b"}

    def test_malformed(self):
        with pytest.raises(UsageError, match="expected KEY=VALUE"):
            cli.parse_overrides(["PF_VCPUS"])

    def test_unknown_key_ignored(self):
        with patch("pfztp.cli.log") as mock_log:
            assert cli.parse_overrides(["NOPE=1"]) == {}
        mock_log.assert_called_once_with("WARN", "Ignoring unknown configuration key 'NOPE'")


class TestMain:
    def test_bad_argument_exits_64(self):
        with patch("pfztp.cli.log") as mock_log:
            assert cli.main(["--bogus"]) == 64
        assert mock_log.call_args[0][0] == "ERROR"

    def test_show_config(self, env_file, capsys):
        assert cli.main(["--env-file", str(env_file), "--show-config", "--set", "PF_VCPUS=6"]) == 0
        out = capsys.readouterr().out
        assert "vm_name: edge" in out
        assert "vcpus: 6" in out

    def test_no_headless_flag(self, env_file, capsys):
        assert cli.main(["--env-file", str(env_file), "--show-config", "--no-headless"]) == 0
        assert "headless: False" in capsys.readouterr().out

    def test_configuration_error_exits_78(self, tmp_path, clean_env):
        assert cli.main(["--env-file", str(tmp_path / "missing.env")]) == 78

    def test_missing_tools_exit_69(self, env_file):
        with patch("pfztp.cli.require_commands", side_effect=MissingDependency("virsh missing")):
            assert cli.main(["--env-file", str(env_file)]) == 69

    def test_successful_run(self, env_file, capsys):
        virt = MagicMock()
        report = ReconcileReport(domain="edge", defined=True)
        with patch("pfztp.cli.require_commands"), patch("pfztp.cli.open_manager", return_value=virt), patch(
            "pfztp.cli.Reconciler"
        ) as mock_reconciler:
            mock_reconciler.return_value.run.return_value = report
            assert cli.main(["--env-file", str(env_file), "--installation-path", "/isos/pf.img"]) == 0
        _, kwargs = mock_reconciler.call_args
        assert kwargs["installer_override"] == "/isos/pf.img"
        virt.close.assert_called_once_with()
        assert "virsh -c qemu:///system start edge" in capsys.readouterr().out

    def test_dry_run_uses_plan_executor(self, env_file):
        with patch("pfztp.cli.require_commands"), patch("pfztp.cli.open_manager") as mock_open, patch(
            "pfztp.cli.Reconciler"
        ) as mock_reconciler:
            mock_reconciler.return_value.run.return_value = ReconcileReport(domain="edge")
            assert cli.main(["--env-file", str(env_file), "--dry-run"]) == 0
        executor = mock_open.call_args[0][1]
        assert executor.dry_run is True

    def test_finalize(self, env_file):
        with patch("pfztp.cli.require_commands"), patch("pfztp.cli.open_manager"), patch(
            "pfztp.cli.Reconciler"
        ) as mock_reconciler:
            mock_reconciler.return_value.finalize.return_value = "detached"
            assert cli.main(["--env-file", str(env_file), "--finalize"]) == 0
        mock_reconciler.return_value.finalize.assert_called_once_with()
        mock_reconciler.return_value.run.assert_not_called()

    @pytest.mark.parametrize(
        "exc,code",
        [(NotReady("domain busy"), 75), (ConfigurationError("bad"), 78)],
    )
    def test_manager_errors_map_to_exit_codes(self, env_file, exc, code):
        virt = MagicMock()
        with patch("pfztp.cli.require_commands"), patch("pfztp.cli.open_manager", return_value=virt), patch(
            "pfztp.cli.Reconciler"
        ) as mock_reconciler:
            mock_reconciler.return_value.run.side_effect = exc
            assert cli.main(["--env-file", str(env_file)]) == code
        virt.close.assert_called_once_with()

    def test_unexpected_error_exits_70(self, env_file):
        with patch("pfztp.cli.require_commands"), patch("pfztp.cli.open_manager"), patch(
            "pfztp.cli.Reconciler"
        ) as mock_reconciler, patch("pfztp.cli.log") as mock_log:
            mock_reconciler.return_value.run.side_effect = KeyError("boom")
            assert cli.main(["--env-file", str(env_file)]) == 70
        assert any("Unexpected error" in call.args[1] for call in mock_log.call_args_list)
