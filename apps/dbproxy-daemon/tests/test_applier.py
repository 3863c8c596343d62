"""Tests for staging, validating and deploying the HAProxy config."""

from __future__ import annotations

import stat
from pathlib import Path

import pytest

from dbproxy.errors import ProxyConfigInvalid, ProxyReloadFailed
from dbproxy.services.applier import ProxyApplier

from conftest import FakeProxy


@pytest.fixture
def paths(tmp_path: Path) -> tuple[Path, Path]:
    return tmp_path / "haproxy.cfg", tmp_path / "haproxy.cfg.staged"


@pytest.fixture
def applier(proxy: FakeProxy, paths) -> ProxyApplier:
    live, staging = paths
    return ProxyApplier(proxy, live, staging)


class TestApply:
    def test_deploys_and_reloads(self, applier, proxy, paths):
        live, staging = paths
        assert applier.apply("config v1\n") is True
        assert live.read_text() == "config v1\n"
        assert proxy.checked == ["config v1\n"]
        assert proxy.reloads == 1
        assert stat.S_IMODE(live.stat().st_mode) == 0o644

    def test_identical_config_is_not_reloaded(self, applier, proxy):
        applier.apply("config v1\n")
        assert applier.apply("config v1\n") is False
        assert proxy.reloads == 1
        # still validated every time
        assert len(proxy.checked) == 2

    def test_force_reloads_identical_config(self, applier, proxy):
        applier.apply("config v1\n")
        assert applier.apply("config v1\n", force=True) is True
        assert proxy.reloads == 2

    def test_invalid_config_leaves_live_file(self, applier, proxy, paths):
        live, staging = paths
        applier.apply("config v1\n")
        proxy.invalid = True

        with pytest.raises(ProxyConfigInvalid, match="ALERT"):
            applier.apply("broken\n")
        assert live.read_text() == "config v1\n"
        assert staging.read_text() == "broken\n"
        assert proxy.reloads == 1

    def test_reload_failure_falls_back_to_restart(self, applier, proxy):
        proxy.reload_fails = True
        assert applier.apply("config v1\n") is True
        assert proxy.restarts == 1

    def test_reload_and_restart_failure(self, applier, proxy, paths):
        live, _ = paths
        proxy.reload_fails = True
        proxy.restart_fails = True

        with pytest.raises(ProxyReloadFailed, match="stale") as exc_info:
            applier.apply("config v1\n")
        assert "reload failed" in str(exc_info.value)
        assert "restart failed" in str(exc_info.value)
        # the validated config is installed even though the process did not pick it up
        assert live.read_text() == "config v1\n"

    def test_unknown_owner_is_not_fatal(self, proxy, paths):
        live, staging = paths
        applier = ProxyApplier(proxy, live, staging, owner="no-such-user-dbproxy", group="no-such-group-dbproxy")
        assert applier.apply("config v1\n") is True
        assert live.exists()
