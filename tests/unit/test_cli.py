"""Tests for the click-based CLI."""

import logging
from unittest.mock import patch

import pytest
import yaml
from click.testing import CliRunner

from site_relocator.cli.commands import cli
from site_relocator.cli.common import handle_exception
from site_relocator.cli.migrate_cmd import RelocationRunner
from site_relocator.core.checkpoint import CheckpointData, load_checkpoint, save_checkpoint
from site_relocator.core.plan import MigrationPlan
from site_relocator.exceptions import ConfigError, StepAbortedError, TransferError
from site_relocator.types import RunContext, StepStatus

MIGRATE = "site_relocator.cli.migrate_cmd"


@pytest.fixture()
def defaults_file(tmp_path, base_settings):
    path = tmp_path / "defaults.yaml"
    path.write_text(yaml.safe_dump(base_settings))
    return path


class TestCLIGroup:
    """Tests for the CLI group structure."""

    def test_cli_has_all_subcommands(self):
        assert set(cli.commands.keys()) == {"migrate", "check", "init-config"}

    def test_version_flag(self):
        result = CliRunner().invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "site-relocator" in result.output

    def test_help_output(self):
        result = CliRunner().invoke(cli, ["-h"])
        assert result.exit_code == 0
        for name in ("migrate", "check", "init-config"):
            assert name in result.output


class TestMigrateCommand:
    """Tests for the migrate subcommand."""

    def test_help_shows_options(self):
        result = CliRunner().invoke(cli, ["migrate", "--help"])
        assert result.exit_code == 0
        for opt in [
            "--old-host",
            "--new-host",
            "--db",
            "--transfer-mode",
            "--db-mode",
            "--db-compress",
            "--start-step",
            "--resume",
            "--dry-run",
            "--from-neither",
            "--allow-legacy-ssh",
            "--plesk-setup",
            "SITE_RELOCATOR_SOURCE_DB_PASSWORD",
        ]:
            assert opt in result.output

    def test_missing_settings_exit_1(self, tmp_path):
        result = CliRunner().invoke(
            cli, ["migrate", "--config", str(tmp_path / "absent.yaml"), "--old-host", "a"]
        )
        assert result.exit_code == 1

    def test_flags_override_defaults_file(self, defaults_file):
        with patch(f"{MIGRATE}.RelocationRunner") as runner:
            runner.return_value.run.return_value = 0
            result = CliRunner().invoke(
                cli,
                [
                    "migrate",
                    "--config",
                    str(defaults_file),
                    "--new-host",
                    "other.example.com",
                    "--db",
                    "shop:shop_new",
                    "--db-mode",
                    "auto",
                    "--from-old",
                ],
                env={"SITE_RELOCATOR_SOURCE_PASSWORD": "env-pw"},
            )

        assert result.exit_code == 0, result.output
        config = runner.call_args.args[0]
        assert config.destination.host == "other.example.com"
        assert config.source.host == "old.example.com"
        assert config.databases[0].destination == "shop_new"
        assert config.db_mode.value == "auto"
        assert config.origin.value == "source"
        assert config.source.password == "env-pw"

    def test_flag_first_invocation_defaults_to_migrate(self, defaults_file):
        with patch(f"{MIGRATE}.RelocationRunner") as runner:
            runner.return_value.run.return_value = 1
            result = CliRunner().invoke(cli, ["--config", str(defaults_file), "--dry-run"])
        assert result.exit_code == 1
        assert runner.call_args.args[0].dry_run is True

    def test_save_defaults_leaves_out_environment_secrets(self, defaults_file):
        with patch(f"{MIGRATE}.RelocationRunner") as runner:
            runner.return_value.run.return_value = 0
            CliRunner().invoke(
                cli,
                ["migrate", "--config", str(defaults_file), "--old-port", "2222", "--save-defaults"],
                env={"SITE_RELOCATOR_DESTINATION_PASSWORD": "env-pw"},
            )
        saved = yaml.safe_load(defaults_file.read_text())
        assert saved["source_port"] == 2222
        assert "destination_password" not in saved


class TestCheckCommand:
    """Tests for the check subcommand."""

    def test_runs_preflight_only(self, defaults_file):
        with patch("site_relocator.cli.check_cmd.RelocationRunner") as runner:
            runner.return_value.run.return_value = 0
            result = CliRunner().invoke(cli, ["check", "--config", str(defaults_file)])
        assert result.exit_code == 0
        runner.return_value.run.assert_called_once_with(preflight_only=True)


class TestInitConfigCommand:
    """Tests for the init-config subcommand."""

    def test_writes_template_once(self, tmp_path):
        path = tmp_path / "cfg" / "defaults.yaml"
        first = CliRunner().invoke(cli, ["init-config", "--config", str(path)])
        assert first.exit_code == 0
        assert path.exists()

        second = CliRunner().invoke(cli, ["init-config", "--config", str(path)])
        assert second.exit_code == 1


class TestRelocationRunner:
    """Tests for RelocationRunner.run()."""

    def _run(self, config, tmp_path, actions, resolve=RunContext.NEITHER):
        plans = []

        def fake_build_plan(context, channels, staging, interactive=None):
            plan = MigrationPlan(context, {}, resume_threshold=context.config.start_step)
            for label, action, mandatory in actions:
                plan.add_step(label, action, mandatory=mandatory)
            plans.append(plan)
            return plan

        runner = RelocationRunner(config, checkpoint_path=tmp_path / "checkpoint.json")
        with patch(f"{MIGRATE}.resolve_run_context", return_value=resolve), patch(
            f"{MIGRATE}.ControlChannelManager"
        ) as channels, patch(f"{MIGRATE}.build_plan", side_effect=fake_build_plan):
            code = runner.run()
        channels.return_value.close_all.assert_called_once_with()
        return code, plans[0]

    def test_success_clears_checkpoint(self, make_config, tmp_path):
        code, plan = self._run(make_config(), tmp_path, [("one", lambda: None, True)])
        assert code == 0
        assert not (tmp_path / "checkpoint.json").exists()

    def test_optional_failure_exits_1_and_keeps_checkpoint(self, make_config, tmp_path):
        def fail():
            raise TransferError("rsync exited with 23")

        code, plan = self._run(
            make_config(), tmp_path, [("one", lambda: None, True), ("two", fail, False)]
        )
        assert code == 1
        assert load_checkpoint(tmp_path / "checkpoint.json").resume_from == 2

    def test_mandatory_failure_aborts(self, make_config, tmp_path):
        def fail():
            raise ConfigError("bad")

        called = []
        code, plan = self._run(
            make_config(),
            tmp_path,
            [("one", fail, True), ("two", lambda: called.append(2), False)],
        )
        assert code == 1
        assert called == []

    def test_interrupt_exits_130(self, make_config, tmp_path):
        def interrupt():
            raise KeyboardInterrupt

        code, plan = self._run(make_config(), tmp_path, [("one", interrupt, False)])
        assert code == 130
        assert plan.steps[0].status is StepStatus.RUNNING

    def test_resume_uses_checkpoint(self, make_config, tmp_path):
        config = make_config(resume=True)
        key = "deploy@old.example.com:22->deploy@new.example.com:22"
        save_checkpoint(tmp_path / "checkpoint.json", CheckpointData(plan_key=key, resume_from=2))
        called = []
        code, plan = self._run(
            config,
            tmp_path,
            [("one", lambda: called.append(1), True), ("two", lambda: called.append(2), False)],
        )
        assert code == 0
        assert called == [2]
        assert plan.steps[0].status is StepStatus.SKIPPED_BY_RESUME


class TestHandleException:
    """Tests for handle_exception()."""

    def test_step_aborted_suggests_start_step(self, caplog):
        caplog.set_level(logging.INFO)
        handle_exception(StepAbortedError(3, "Validate tools on destination", "missing rsync"))
        assert "--start-step 3" in caplog.text

    def test_unexpected_error_logs_traceback(self, caplog):
        try:
            raise ValueError("surprise")
        except ValueError as e:
            handle_exception(e)
        assert "Relocation failed: surprise" in caplog.text
        assert "Traceback" in caplog.text

    def test_config_error(self, caplog):
        caplog.set_level(logging.INFO)
        handle_exception(ConfigError("Missing required settings: databases"))
        assert "Configuration error" in caplog.text
        assert "init-config" in caplog.text
