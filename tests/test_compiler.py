"""End-to-end tests for TraefikConfigCompiler over an in-memory store."""

import pytest

from edge_config.compiler import REDIRECT_HTTPS_MIDDLEWARE, TraefikConfigCompiler
from edge_config.config import CompilerSettings
from edge_config.models import ExitNode, HostMode, PathMatchType, Protocol, SiteType
from edge_config.store import StoreError

from helpers import MemoryStore, make_hostname, make_resource, make_row, make_site


def mixed_store() -> MemoryStore:
    web = make_resource(1, ssl=True, host_mode=HostMode.REDIRECT)
    ssh = make_resource(2, protocol=Protocol.TCP, proxy_port=2022, full_domain=None)
    dns = make_resource(3, protocol=Protocol.UDP, proxy_port=53, full_domain=None)
    local = make_site(1, type=SiteType.LOCAL, online=True)
    newt = make_site(2, type=SiteType.NEWT, online=True, subnet="100.90.1.2/24")
    return MemoryStore(
        rows=[
            make_row(web, local, 1, ip="10.0.0.5", port=80),
            make_row(web, newt, 2, internal_port=41000),
            make_row(web, local, 3, path="/api", path_match_type=PathMatchType.PREFIX),
            make_row(ssh, newt, 4, internal_port=41022),
            make_row(dns, local, 5, ip="10.0.0.53", port=53),
        ],
        hostnames=[
            make_hostname(1, "app.example.com", primary=True),
            make_hostname(1, "www.example.com"),
        ],
    )


class TestCompile:
    """Tests for whole-document compilation."""

    def test_empty_store_gives_empty_document(self) -> None:
        """Test an empty store compiles to an empty object."""
        compiler = TraefikConfigCompiler(MemoryStore(), CompilerSettings())
        assert compiler.compile() == {}

    def test_mixed_document_sections(self) -> None:
        """Test HTTP, TCP and UDP resources land in their own sections."""
        document = TraefikConfigCompiler(mixed_store(), CompilerSettings()).compile()

        assert sorted(document) == ["http", "tcp", "udp"]
        assert sorted(document["http"]) == ["middlewares", "routers", "services"]
        assert sorted(document["http"]["routers"]) == [
            "1-api-prefix-router",
            "1-api-prefix-router-redirect",
            "1-api-prefix-wwwexamplecom-redirect",
            "1-api-prefix-wwwexamplecom-redirect-http",
            "1-router",
            "1-router-redirect",
            "1-wwwexamplecom-redirect",
            "1-wwwexamplecom-redirect-http",
        ]
        assert document["http"]["services"]["1-service"]["loadBalancer"]["servers"] == [
            {"url": "http://10.0.0.5:80"},
            {"url": "http://100.90.1.2:41000"},
        ]
        assert document["tcp"]["services"]["2-service"]["loadBalancer"]["servers"] == [
            {"address": "100.90.1.2:41022"}
        ]
        assert document["udp"]["routers"]["3-router"]["entryPoints"] == ["udp-53"]

    def test_shared_middlewares_present(self) -> None:
        """Test the HTTPS redirect and auth middlewares are added."""
        document = TraefikConfigCompiler(mixed_store(), CompilerSettings()).compile()
        middlewares = document["http"]["middlewares"]
        assert REDIRECT_HTTPS_MIDDLEWARE in middlewares
        assert "badger" in middlewares

    def test_raw_only_document_has_no_http_section(self) -> None:
        """Test a raw-only snapshot produces no http section."""
        resource = make_resource(1, protocol=Protocol.TCP, proxy_port=5000)
        store = MemoryStore(rows=[make_row(resource, make_site())])

        document = TraefikConfigCompiler(store, CompilerSettings()).compile()

        assert sorted(document) == ["tcp"]

    def test_compilation_is_idempotent(self) -> None:
        """Test an unchanged snapshot compiles to an identical document."""
        compiler = TraefikConfigCompiler(mixed_store(), CompilerSettings())
        assert compiler.compile() == compiler.compile()

    def test_skipped_groups_do_not_affect_others(self) -> None:
        """Test skipped groups leave the remaining groups intact."""
        no_domain = make_resource(1, full_domain=None)
        ok = make_resource(2, full_domain="ok.example.com")
        no_port = make_resource(3, protocol=Protocol.TCP, proxy_port=None)
        site = make_site()
        store = MemoryStore(
            rows=[make_row(no_domain, site, 1), make_row(ok, site, 2), make_row(no_port, site, 3)]
        )

        document = TraefikConfigCompiler(store, CompilerSettings()).compile()

        assert list(document) == ["http"]
        assert sorted(document["http"]["routers"]) == ["2-router"]

    def test_one_snapshot_per_compilation(self) -> None:
        """Test every compilation reads through exactly one store snapshot."""
        store = mixed_store()
        compiler = TraefikConfigCompiler(store, CompilerSettings())

        compiler.compile()
        compiler.compile()

        assert store.snapshot_calls == 2
        assert len(store.row_calls) == 2
        assert len(store.hostname_calls) == 2

    def test_store_failure_aborts(self) -> None:
        """Test a store failure raises instead of returning a partial document."""
        compiler = TraefikConfigCompiler(MemoryStore(fail=True), CompilerSettings())
        with pytest.raises(StoreError):
            compiler.compile()


class TestExitNodeScoping:
    """Tests for per-exit-node visibility."""

    def _store(self) -> MemoryStore:
        resource = make_resource(1)
        return MemoryStore(
            exit_nodes=[ExitNode(1, "edge-1"), ExitNode(2, "edge-2")],
            rows=[
                make_row(resource, make_site(1, exit_node_id=1), 1, ip="10.0.0.1"),
                make_row(resource, make_site(2, exit_node_id=2), 2, ip="10.0.0.2"),
                make_row(resource, make_site(3, exit_node_id=None), 3, ip="10.0.0.3"),
            ],
        )

    def _servers(self, settings: CompilerSettings):
        document = TraefikConfigCompiler(self._store(), settings).compile()
        return document["http"]["services"]["1-service"]["loadBalancer"]["servers"]

    def test_named_exit_node(self) -> None:
        """Test a named exit node sees its own sites plus unassigned ones."""
        assert self._servers(CompilerSettings(exit_node_name="edge-2")) == [
            {"url": "http://10.0.0.2:8080"},
            {"url": "http://10.0.0.3:8080"},
        ]

    def test_first_exit_node_by_default(self) -> None:
        """Test the first exit node is used when none is named."""
        assert self._servers(CompilerSettings()) == [
            {"url": "http://10.0.0.1:8080"},
            {"url": "http://10.0.0.3:8080"},
        ]

    def test_unknown_exit_node_sees_only_unassigned_sites(self) -> None:
        """Test an unknown exit node only sees unassigned sites."""
        assert self._servers(CompilerSettings(exit_node_name="gone")) == [
            {"url": "http://10.0.0.3:8080"}
        ]

    def test_site_type_allow_list(self) -> None:
        """Test only allowed site types contribute backends."""
        resource = make_resource(1)
        store = MemoryStore(
            rows=[
                make_row(resource, make_site(1, type=SiteType.LOCAL), 1, ip="10.0.0.1"),
                make_row(resource, make_site(2, type=SiteType.WIREGUARD), 2, ip="10.0.0.2"),
            ]
        )
        settings = CompilerSettings(site_types=("wireguard",))

        document = TraefikConfigCompiler(store, settings).compile()

        assert document["http"]["services"]["1-service"]["loadBalancer"]["servers"] == [
            {"url": "http://10.0.0.2:8080"}
        ]
