"""
Tests for the graph resolver — ordering, dedup, cycles, unknown names.
"""

import pytest

from converge.core.engine.resolver import resolve
from converge.core.errors import CycleError, UnknownDependencyError
from converge.core.models.platform import Platform


def _noop(ctx):
    return True


class TestOrdering:
    def test_chain_prerequisites_first(self, registry):
        registry.dep("a", requires=["b"])
        registry.dep("b", requires=["c"])
        registry.dep("c")

        graph = resolve(registry, ["a"], Platform.LINUX)
        assert graph.order == ["c", "b", "a"]
        assert graph.roots == ["a"]
        assert graph.prerequisites("a") == ["b"]

    def test_every_prerequisite_precedes_dependent(self, registry):
        registry.dep("app", requires=["db", "cache", "web"])
        registry.dep("db", requires=["os"])
        registry.dep("cache", requires=["os"])
        registry.dep("web", requires=["cache"])
        registry.dep("os")

        graph = resolve(registry, ["app"], Platform.LINUX)
        order = graph.order
        for node in graph:
            for req in node.requires:
                assert order.index(req) < order.index(node.key)


class TestDedup:
    def test_diamond_shares_one_node(self, registry):
        registry.dep("a", requires=["b", "c"])
        registry.dep("b", requires=["d"])
        registry.dep("c", requires=["d"])
        registry.dep("d")

        graph = resolve(registry, ["a"], Platform.LINUX)
        assert graph.order.count("d") == 1
        assert len(graph) == 4
        assert graph.dependents("d") == ["b", "c"]
        assert graph.dependents("d", transitive=True) == ["b", "c", "a"]

    def test_duplicate_roots(self, registry):
        registry.dep("a", requires=["b"])
        registry.dep("b")

        graph = resolve(registry, ["a", "b", "a"], Platform.LINUX)
        assert graph.roots == ["a", "b"]
        assert graph.order == ["b", "a"]

    def test_parameterized_requirements_are_distinct_nodes(self, registry):
        registry.dep("web", requires=[("pkg", {"name": "nginx"}), ("pkg", {"name": "pcre"})])
        registry.dep("pkg")

        graph = resolve(registry, ["web"], Platform.LINUX)
        assert graph.order == ["pkg(name='nginx')", "pkg(name='pcre')", "web"]
        assert graph.nodes["pkg(name='pcre')"].params == {"name": "pcre"}


class TestStaticErrors:
    def test_two_node_cycle(self, registry):
        registry.dep("a", requires=["b"])
        registry.dep("b", requires=["a"])

        with pytest.raises(CycleError) as exc_info:
            resolve(registry, ["a"], Platform.LINUX)
        assert exc_info.value.path == ("a", "b", "a")
        assert "a -> b -> a" in str(exc_info.value)

    def test_self_cycle(self, registry):
        registry.dep("a", requires=["a"])

        with pytest.raises(CycleError) as exc_info:
            resolve(registry, ["a"], Platform.LINUX)
        assert exc_info.value.path == ("a", "a")

    def test_cycle_below_root(self, registry):
        registry.dep("root", requires=["x"])
        registry.dep("x", requires=["y"])
        registry.dep("y", requires=["x"])

        with pytest.raises(CycleError) as exc_info:
            resolve(registry, ["root"], Platform.LINUX)
        assert exc_info.value.path == ("x", "y", "x")

    def test_unknown_root(self, registry):
        with pytest.raises(UnknownDependencyError) as exc_info:
            resolve(registry, ["ghost"], Platform.LINUX)
        assert exc_info.value.required_by is None

    def test_unknown_prerequisite(self, registry):
        registry.dep("a", requires=["ghost"])

        with pytest.raises(UnknownDependencyError) as exc_info:
            resolve(registry, ["a"], Platform.LINUX)
        assert exc_info.value.name == "ghost"
        assert exc_info.value.required_by == "a"


class TestPlatformNodes:
    def test_variant_prerequisites_only_when_selected(self, registry):
        d = registry.dep("webserver running")
        d.met(_noop)
        d.on("linux").requires("startup script")
        registry.dep("startup script")

        assert resolve(registry, ["webserver running"], Platform.LINUX).order == [
            "startup script",
            "webserver running",
        ]
        assert resolve(registry, ["webserver running"], Platform.OSX).order == [
            "webserver running",
        ]

    def test_restricted_node_is_not_expanded(self, registry):
        registry.dep("launchd", only_on=["osx"], requires=["osx-only-thing"])
        registry.dep("osx-only-thing")

        graph = resolve(registry, ["launchd"], Platform.LINUX)
        node = graph.nodes["launchd"]
        assert node.platform_skip
        assert node.requires == []
        assert "osx-only-thing" not in graph

    def test_unknown_name_in_restricted_node(self, registry):
        registry.dep("launchd", only_on=["osx"], requires=["osx-only-thnig"])

        with pytest.raises(UnknownDependencyError) as exc_info:
            resolve(registry, ["launchd"], Platform.LINUX)
        assert exc_info.value.name == "osx-only-thnig"
        assert exc_info.value.required_by == "launchd"

    def test_unknown_name_in_other_platform_variant(self, registry):
        d = registry.dep("webserver running")
        d.met(_noop)
        d.on("osx").requires("launchd plist")

        with pytest.raises(UnknownDependencyError, match="launchd plist"):
            resolve(registry, ["webserver running"], Platform.LINUX)

    def test_unsupported_node_is_kept(self, registry):
        d = registry.dep("startup script")
        d.on("linux").meet(_noop)

        graph = resolve(registry, ["startup script"], Platform.OSX)
        assert graph.nodes["startup script"].unsupported == "meet only declared for: linux"

    def test_to_dict(self, registry):
        registry.dep("a", requires=["b"])
        registry.dep("b")

        data = resolve(registry, ["a"], Platform.BSD).to_dict()
        assert data["platform"] == "bsd"
        assert data["order"] == ["b", "a"]
        assert data["nodes"][1]["requires"] == ["b"]


class TestKinds:
    def test_template_prerequisites_expanded(self, registry):
        registry.dep("vhost enabled", kind="nginx").met(_noop)
        registry.kind("nginx").requires("webserver configured")
        registry.dep("webserver configured")

        graph = resolve(registry, ["vhost enabled"], Platform.LINUX)
        assert graph.order == ["webserver configured", "vhost enabled"]

    def test_helpers_attached_to_node(self, registry):
        k = registry.kind("nginx")

        @k.helper
        def nginx_bin(ctx):
            return "/opt/nginx/sbin/nginx"

        registry.dep("webserver running", kind="nginx")
        registry.dep("unrelated")

        graph = resolve(registry, ["webserver running", "unrelated"], Platform.LINUX)
        assert graph.nodes["webserver running"].helpers == {"nginx_bin": nginx_bin}
        assert graph.nodes["unrelated"].helpers == {}

    def test_unknown_name_in_template(self, registry):
        registry.kind("src").requires("build tools")
        registry.dep("pcre", kind="src")

        with pytest.raises(UnknownDependencyError) as exc_info:
            resolve(registry, ["pcre"], Platform.LINUX)
        assert exc_info.value.required_by == "pcre"
