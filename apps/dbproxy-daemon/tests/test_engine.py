"""End-to-end tests for the routing engine with in-memory collaborators."""

from __future__ import annotations

import pytest

from dbproxy_common import ProtocolFamily

from dbproxy.engine import RoutingEngine
from dbproxy.errors import (
    BackendNotFoundError,
    DomainConflict,
    InvalidBackendError,
    PortConflict,
    ProxyConfigInvalid,
)


def _live(engine: RoutingEngine) -> str:
    return engine.cfg.live_config_path.read_text()


class TestAddRemove:
    def test_add_then_remove(self, engine, proxy):
        entry = engine.add_backend("db1", "db1.acme.io", 35001, ProtocolFamily.POSTGRES)
        assert entry.internal_port == 35001

        config = _live(engine)
        assert "frontend postgres_frontend\n    bind *:5432\n" in config
        assert "default_backend postgres_db1" in config
        assert "server db1 127.0.0.1:35001 check" in config
        assert proxy.reloads == 1

        assert engine.remove_backend("db1") is True
        assert "frontend " not in _live(engine)
        assert engine.get_backends() == []
        assert proxy.reloads == 2

    def test_live_port_overrides_declared(self, engine, runtime):
        runtime.ports["db1"] = 36000
        entry = engine.add_backend("db1", "db1.acme.io", 35001)
        assert entry.internal_port == 36000
        assert "127.0.0.1:36000" in _live(engine)

    def test_unreachable_runtime_uses_declared_port(self, engine, runtime):
        runtime.unreachable = True
        assert engine.add_backend("db1", "db1.acme.io", 35001).internal_port == 35001

    def test_remove_unknown(self, engine, proxy):
        assert engine.remove_backend("nope") is False
        assert proxy.reloads == 0

    def test_remove_with_wrong_family(self, engine):
        engine.add_backend("db1", "db1.acme.io", 35001)
        assert engine.remove_backend("db1", ProtocolFamily.MYSQL) is False
        assert engine.get_backend("db1") is not None

    def test_remove_purges_certificates(self, engine, cert_source):
        cert_source.issue("db1.acme.io")
        engine.add_backend("db1", "db1.acme.io", 35001)
        engine.sync_certificates()
        assert engine.certificates.has_bundle("db1")

        engine.remove_backend("db1", purge_certificates=True)
        assert not engine.certificates.instance_dir("db1").exists()

    def test_readd_updates_in_place(self, engine):
        engine.add_backend("db1", "db1.acme.io", 35001)
        engine.add_backend("db1", "db1.acme.io", 35005)
        assert len(engine.get_backends()) == 1
        assert engine.get_backend("db1").internal_port == 35005


class TestConflicts:
    def test_domain_conflict_leaves_state(self, engine, proxy):
        engine.add_backend("db1", "db1.acme.io", 35001)
        before = _live(engine)

        with pytest.raises(DomainConflict):
            engine.add_backend("db2", "DB1.acme.io", 35002)
        assert [e.instance_name for e in engine.get_backends()] == ["db1"]
        assert _live(engine) == before
        assert proxy.reloads == 1

    def test_port_conflict(self, engine):
        engine.add_backend("db1", "db1.acme.io", 35001)
        with pytest.raises(PortConflict):
            engine.add_backend("db2", "db2.acme.io", 35001)
        assert len(engine.get_backends()) == 1

    def test_port_conflict_after_drift(self, engine, runtime):
        engine.add_backend("db1", "db1.acme.io", 35001)
        runtime.ports["db1"] = 35002

        with pytest.raises(PortConflict):
            engine.add_backend("db2", "db2.acme.io", 35002)
        assert [(e.instance_name, e.internal_port) for e in engine.get_backends()] == [("db1", 35001)]

    def test_drift_is_adopted_before_adding(self, engine, runtime):
        engine.add_backend("db1", "db1.acme.io", 35001)
        runtime.ports["db1"] = 35003

        engine.add_backend("db2", "db2.acme.io", 35001)
        assert engine.get_backend("db1").internal_port == 35003
        assert engine.get_backend("db2").internal_port == 35001

    @pytest.mark.parametrize("name", ["..", ".", "a/b", "db1\n", ""])
    def test_invalid_instance_name(self, engine, name, proxy):
        engine.add_backend("db0", "db0.acme.io", 35000)
        with pytest.raises(InvalidBackendError):
            engine.add_backend(name, "db1.acme.io", 35001)
        assert engine.remove_backend(name, purge_certificates=True) is False
        assert [e.instance_name for e in engine.get_backends()] == ["db0"]
        assert engine.cfg.backends_file.is_file()
        assert proxy.reloads == 1

    @pytest.mark.parametrize(
        "domain",
        ["db1.acme.io\n    server evil 10.0.0.1:5432", "db1 acme.io", "db1.acme.io }", "db1..acme.io", ""],
    )
    def test_invalid_domain(self, engine, domain):
        with pytest.raises(InvalidBackendError):
            engine.add_backend("db1", domain, 35001)
        assert engine.get_backends() == []

    def test_same_port_other_family(self, engine):
        engine.add_backend("db1", "db1.acme.io", 35001)
        engine.add_backend("shop", "shop.acme.io", 35001, ProtocolFamily.MYSQL)
        assert len(engine.get_backends()) == 2
        assert "frontend mysql_frontend" in _live(engine)

    def test_invalid_config_rolls_back(self, engine, proxy):
        engine.add_backend("db1", "db1.acme.io", 35001)
        proxy.invalid = True

        with pytest.raises(ProxyConfigInvalid):
            engine.add_backend("db2", "db2.acme.io", 35002)
        assert [e.instance_name for e in engine.get_backends()] == ["db1"]
        assert "postgres_db2" not in _live(engine)

    def test_invalid_config_rolls_back_remove(self, engine, proxy):
        engine.add_backend("db1", "db1.acme.io", 35001)
        proxy.invalid = True
        with pytest.raises(ProxyConfigInvalid):
            engine.remove_backend("db1")
        assert engine.get_backend("db1") is not None


class TestQueries:
    def test_find_by_domain(self, engine):
        engine.add_backend("db1", "db1.acme.io", 35001)
        assert engine.find_by_domain("DB1.ACME.IO").instance_name == "db1"
        assert engine.find_by_domain("db9.acme.io") is None

    def test_require_backend(self, engine):
        engine.add_backend("db1", "db1.acme.io", 35001)
        assert engine.require_backend("db1").domain == "db1.acme.io"
        assert engine.require_backend("DB1.acme.io").instance_name == "db1"
        with pytest.raises(BackendNotFoundError):
            engine.require_backend("nope")

    def test_fallback_ports(self, engine):
        engine.add_backend("db1", "db1.acme.io", 35001)
        engine.add_backend("db2", "db2.acme.io", 35002)

        assert engine.get_backend_port("db1") is None
        assert engine.get_backend_port("db2") == 5433
        assert engine.get_backend_port("missing") is None
        config = _live(engine)
        assert "default_backend postgres_db1\n" in config
        assert "frontend postgres_db2_fallback\n    bind *:5433\n" in config

    def test_fallback_ports_disabled(self, tmp_config, runtime, proxy, cert_source, clock):
        cfg = tmp_config.model_copy(update={"fallback_ports": False})
        engine = RoutingEngine(cfg, runtime=runtime, certificate_source=cert_source, proxy=proxy, clock=clock)
        engine.add_backend("db1", "db1.acme.io", 35001)
        engine.add_backend("db2", "db2.acme.io", 35002)
        assert engine.get_backend_port("db2") is None
        assert "_fallback" not in _live(engine)

    def test_render_does_not_deploy(self, engine, proxy):
        engine.add_backend("db1", "db1.acme.io", 35001)
        text = engine.render()
        assert text == _live(engine)
        assert proxy.reloads == 1

    def test_store_survives_restart(self, engine, tmp_config, runtime, proxy, cert_source, clock):
        engine.add_backend("db1", "db1.acme.io", 35001)
        engine.add_backend("db2", "db2.acme.io", 35002)
        fresh = RoutingEngine(tmp_config, runtime=runtime, certificate_source=cert_source, proxy=proxy, clock=clock)
        assert fresh.get_backends() == engine.get_backends()


class TestReconcile:
    def test_drift_is_deployed(self, engine, runtime):
        engine.add_backend("db1", "db1.acme.io", 35001)
        runtime.ports["db1"] = 35100

        report = engine.reconcile_ports()
        assert report.fixed_count == 1
        assert engine.get_backend("db1").internal_port == 35100
        assert "server db1 127.0.0.1:35100 check" in _live(engine)

    def test_missing_container_reported(self, engine, proxy):
        engine.add_backend("db1", "db1.acme.io", 35001)
        report = engine.reconcile_ports()
        assert report.missing == ["db1"]
        assert proxy.reloads == 1

    def test_check_mappings(self, engine, runtime):
        runtime.ports["db1"] = 35001
        engine.add_backend("db1", "db1.acme.io", 35001)
        assert [c.status for c in engine.check_mappings()] == ["valid"]


class TestCertificateSync:
    def test_sync_switches_family_to_sni(self, engine, runtime, cert_source, proxy):
        runtime.ports.update({"db1": 35001, "db2": 35002})
        engine.add_backend("db1", "db1.acme.io", 35001)
        engine.add_backend("db2", "db2.acme.io", 35002)
        assert engine.get_backend_port("db2") == 5433
        reloads = proxy.reloads

        cert_source.issue("db1.acme.io")
        cert_source.issue("db2.acme.io")
        stats = engine.trigger_manual_certificate_sync()

        assert stats.updated_domains == 2
        assert stats.reloaded is True
        assert sorted(runtime.restarted) == ["db1", "db2"]
        assert proxy.reloads == reloads + 1
        config = _live(engine)
        assert "use_backend postgres_db1 if { ssl_fc_sni -i db1.acme.io }" in config
        assert "use_backend postgres_db2 if { ssl_fc_sni -i db2.acme.io }" in config
        assert "_fallback" not in config
        assert engine.get_backend_port("db2") is None

    def test_add_schedules_debounced_sync(self, engine, clock, cert_source):
        engine.start(background=False)
        engine.add_backend("db1", "db1.acme.io", 35001)
        engine.add_backend("db2", "db2.acme.io", 35002)
        assert engine.scheduler.tick() is None

        clock.advance(5)
        stats = engine.scheduler.tick()
        assert stats is not None
        assert stats.domains_processed == 2
        assert [d for _, d in cert_source.requests] == ["db1.acme.io", "db2.acme.io"]
        engine.stop()

    def test_auto_sync_disabled(self, tmp_config, runtime, proxy, cert_source, clock):
        cfg = tmp_config.model_copy(update={"cert_auto_sync": False})
        engine = RoutingEngine(cfg, runtime=runtime, certificate_source=cert_source, proxy=proxy, clock=clock)
        engine.start(background=False)
        assert not engine.scheduler.started
        engine.add_backend("db1", "db1.acme.io", 35001)
        clock.advance(3600)
        assert engine.scheduler.tick() is None
        assert cert_source.requests == []

    def test_backend_removed_during_sync_gets_no_bundle(self, engine, runtime, cert_source):
        runtime.ports["db1"] = 35001
        engine.add_backend("db1", "db1.acme.io", 35001)
        cert_source.issue("db1.acme.io")
        snapshot = engine.get_backends()

        engine.remove_backend("db1")
        stats = engine.synchronizer.sync(snapshot)

        assert stats.updated_domains == 0
        assert not engine.certificates.has_bundle("db1")
        assert runtime.restarted == []

    def test_prune_certificates(self, engine, cert_source):
        cert_source.issue("db1.acme.io")
        cert_source.issue("db2.acme.io")
        engine.add_backend("db1", "db1.acme.io", 35001)
        engine.add_backend("db2", "db2.acme.io", 35002)
        engine.sync_certificates()
        engine.remove_backend("db2")

        assert engine.prune_certificates() == ["db2"]
        assert engine.certificates.instances() == ["db1"]
        assert engine.prune_certificates() == []
