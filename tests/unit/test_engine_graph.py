import pytest

from stack_provisioner.engine.errors import DependencyCycleError
from stack_provisioner.engine.graph import DependencyGraph, build_dependency_graph
from stack_provisioner.resources import BucketResource, SecretResource, TrailResource, ref


def test_topological_order_deterministic() -> None:
    graph = DependencyGraph(nodes=["a", "b", "c"], dependencies={"b": ["a"], "c": ["a"]})
    assert graph.topological_order() == ["a", "b", "c"]


def test_ties_broken_by_id() -> None:
    graph = DependencyGraph(nodes=["zeta", "alpha", "mid"], dependencies={})
    assert graph.topological_order() == ["alpha", "mid", "zeta"]


def test_topological_order_ignores_external_deps() -> None:
    graph = DependencyGraph(nodes=["a", "b"], dependencies={"b": ["external"]})
    assert graph.topological_order() == ["a", "b"]


def test_dependency_before_dependent_regardless_of_name() -> None:
    graph = DependencyGraph(nodes=["a", "b"], dependencies={"a": ["b"]})
    assert graph.topological_order() == ["b", "a"]
    assert graph.reverse_topological_order() == ["a", "b"]


def test_independent_nodes_precede_their_common_dependent() -> None:
    graph = DependencyGraph(nodes=["d", "e", "f"], dependencies={"f": ["d", "e"]})
    order = graph.topological_order()
    assert order.index("d") < order.index("f")
    assert order.index("e") < order.index("f")


def test_cycle_detection_reports_path() -> None:
    graph = DependencyGraph(nodes=["a", "b"], dependencies={"a": ["b"], "b": ["a"]})
    with pytest.raises(DependencyCycleError) as exc_info:
        graph.topological_order()
    cycle = exc_info.value.cycle
    assert cycle[0] == cycle[-1]
    assert set(cycle) == {"a", "b"}


def test_self_reference_is_a_cycle() -> None:
    graph = DependencyGraph(nodes=["c"], dependencies={"c": ["c"]})
    with pytest.raises(DependencyCycleError) as exc_info:
        graph.check_acyclic()
    assert exc_info.value.cycle == ["c", "c"]
    assert "c -> c" in str(exc_info.value)


def test_longer_cycle_is_closed_on_first_node() -> None:
    graph = DependencyGraph(
        nodes=["a", "b", "c", "d"],
        dependencies={"a": ["c"], "b": ["a"], "c": ["b"], "d": ["a"]},
    )
    cycle = graph.find_cycle()
    assert cycle is not None
    assert cycle[0] == cycle[-1]
    assert set(cycle) == {"a", "b", "c"}


def test_acyclic_graph_has_no_cycle() -> None:
    graph = DependencyGraph(nodes=["a", "b"], dependencies={"b": ["a"]})
    assert graph.find_cycle() is None


def test_transitive_dependents() -> None:
    graph = DependencyGraph(
        nodes=["f", "g", "h", "x"], dependencies={"g": ["f"], "h": ["g"], "x": []}
    )
    assert graph.transitive_dependents("f") == {"g", "h"}
    assert graph.transitive_dependents("x") == set()


def test_build_from_references_and_depends_on() -> None:
    logs = BucketResource(name="logs", bucket_name="shop-logs")
    secret = SecretResource(name="creds", secret_name="shop-creds", depends_on=["logs"])
    trail = TrailResource(name="audit", bucket=ref("logs", "arn"))

    graph = build_dependency_graph([trail, secret, logs])
    assert graph.edges() == [("logs", "audit"), ("logs", "creds")]
    assert graph.topological_order() == ["logs", "audit", "creds"]


def test_build_keeps_self_reference() -> None:
    trail = TrailResource(name="c", bucket=ref("c", "arn"))
    graph = build_dependency_graph([trail])
    with pytest.raises(DependencyCycleError) as exc_info:
        graph.topological_order()
    assert exc_info.value.cycle == ["c", "c"]
