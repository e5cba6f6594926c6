"""Unit tests for WordPress handling."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from site_relocator.services.channel import CommandResult
from site_relocator.services.wordpress import WordPressSite
from site_relocator.types import Role, SiteMode


def _argvs(channels) -> list[tuple[str, ...]]:
    return [call.args[1].argv for call in channels.run.call_args_list]


class TestSiteMode:
    """Tests for site mode detection."""

    def test_marker_means_wordpress(self, make_config, mock_channels) -> None:
        site = WordPressSite(make_config(), mock_channels, interactive=False)
        assert site.mode is SiteMode.WORDPRESS
        assert _argvs(mock_channels) == [("test", "-f", "/var/www/site/wp-config.php")]

    def test_missing_marker_means_generic(self, make_config, mock_channels) -> None:
        mock_channels.run.return_value = CommandResult(1)
        site = WordPressSite(make_config(), mock_channels, interactive=False)
        assert site.mode is SiteMode.GENERIC

    def test_detected_once(self, make_config, mock_channels) -> None:
        site = WordPressSite(make_config(), mock_channels, interactive=False)
        assert site.mode is site.mode
        assert mock_channels.run.call_count == 1

    def test_explicit_mode_skips_detection(self, make_config, mock_channels) -> None:
        site = WordPressSite(make_config(site_mode="generic"), mock_channels, interactive=False)
        assert site.mode is SiteMode.GENERIC
        mock_channels.run.assert_not_called()


class TestMaintenanceWindow:
    """Tests for maintenance_window()."""

    def test_flag_written_and_removed(self, make_config, mock_channels) -> None:
        site = WordPressSite(make_config(maintenance="on"), mock_channels, interactive=False)
        with site.maintenance_window():
            written = _argvs(mock_channels)[-1]
            assert written[-1] == "/var/www/site/.maintenance"
            assert "<?php $upgrading = time();" in written
        assert _argvs(mock_channels)[-1] == ("rm", "-f", "/var/www/site/.maintenance")

    def test_flag_removed_when_body_fails(self, make_config, mock_channels) -> None:
        site = WordPressSite(make_config(maintenance="on"), mock_channels, interactive=False)
        with pytest.raises(RuntimeError):
            with site.maintenance_window():
                raise RuntimeError("import failed")
        assert _argvs(mock_channels)[-1] == ("rm", "-f", "/var/www/site/.maintenance")

    def test_disabled_does_nothing(self, make_config, mock_channels) -> None:
        site = WordPressSite(make_config(maintenance="off"), mock_channels, interactive=False)
        with site.maintenance_window():
            pass
        assert all(argv[0] == "test" for argv in _argvs(mock_channels))

    def test_prompt_without_terminal_is_off(self, make_config, mock_channels) -> None:
        site = WordPressSite(make_config(), mock_channels, interactive=False)
        assert site.maintenance_enabled() is False

    def test_prompt_with_terminal_asks_once(self, make_config, mock_channels) -> None:
        site = WordPressSite(make_config(), mock_channels, interactive=True)
        with patch("site_relocator.services.wordpress.click.confirm", return_value=True) as confirm:
            assert site.maintenance_enabled() is True
            assert site.maintenance_enabled() is True
        confirm.assert_called_once()


class TestSearchReplace:
    """Tests for search_replace()."""

    def test_runs_wp_cli_on_destination(
        self, make_config, mock_channels, make_capabilities
    ) -> None:
        config = make_config(old_url="https://old.example.com/", new_url="https://new.example.com")
        site = WordPressSite(config, mock_channels, interactive=False)
        site.search_replace(make_capabilities(Role.DESTINATION, {"wp"}), "/srv/site")

        call = mock_channels.run.call_args
        assert call.args[0] is Role.DESTINATION
        argv = call.args[1].argv
        assert argv[:3] == ("wp", "--path=/srv/site", "search-replace")
        assert argv[3:5] == ("https://old.example.com", "https://new.example.com")
        assert "--skip-columns=guid" in argv

    def test_missing_wp_cli_only_warns(
        self, make_config, mock_channels, make_capabilities, caplog
    ) -> None:
        config = make_config(old_url="https://a.example", new_url="https://b.example")
        site = WordPressSite(config, mock_channels, interactive=False)
        site.search_replace(make_capabilities(Role.DESTINATION), "/srv/site")
        assert "wp-cli not found" in caplog.text
        assert all(argv[0] != "wp" for argv in _argvs(mock_channels))
