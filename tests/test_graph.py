"""Tests for ResourceGraph plan construction and ordering."""

import pytest
from convergent.core.errors import CycleError, DuplicateIdentityError, UnknownReferenceError
from convergent.graph import ResourceGraph
from convergent.resources.models import Notification, ResourceDeclaration, ResourceRef


def decl(ref, requires=(), notifies=(), index=0):
    kind, _, identity = ref.partition(":")
    return ResourceDeclaration(
        kind=kind,
        identity=identity,
        requires=tuple(ResourceRef.parse(r) for r in requires),
        notifies=tuple(Notification(ResourceRef.parse(n)) for n in notifies),
        index=index,
    )


def order(plan):
    return [str(ref) for ref in plan.refs]


class TestOrdering:
    def test_keeps_declaration_order_without_edges(self):
        plan = ResourceGraph().load(
            [decl("file:/c"), decl("file:/a"), decl("service:app"), decl("file:/b")]
        )
        assert order(plan) == ["file:/c", "file:/a", "service:app", "file:/b"]

    def test_required_resource_runs_first(self):
        plan = ResourceGraph().load(
            [
                decl("service:app", requires=["file:/usr/share/java/app.jar"]),
                decl("file:/usr/share/java/app.jar"),
            ]
        )
        assert order(plan) == ["file:/usr/share/java/app.jar", "service:app"]

    def test_ties_broken_by_insertion_order(self):
        plan = ResourceGraph().load(
            [
                decl("file:/a", requires=["file:/z"]),
                decl("file:/b"),
                decl("file:/z"),
                decl("file:/c", requires=["file:/z"]),
            ]
        )
        # /b is ready before /z; /a and /c become ready together after /z
        assert order(plan) == ["file:/b", "file:/z", "file:/a", "file:/c"]

    def test_order_is_deterministic(self):
        declarations = [
            decl("service:app", requires=["template:/etc/app.yml", "file:/opt/app.jar"]),
            decl("template:/etc/app.yml"),
            decl("file:/opt/app.jar"),
            decl("template:/etc/init/app.conf", requires=["file:/opt/app.jar"]),
        ]
        orders = {tuple(order(ResourceGraph().load(declarations))) for _ in range(10)}
        assert len(orders) == 1

    def test_dependents_always_follow_requirements(self):
        declarations = [
            decl("service:app", requires=["template:/etc/init/app.conf"]),
            decl("template:/etc/init/app.conf", requires=["file:/opt/app.jar"]),
            decl("file:/opt/app.jar"),
        ]
        refs = order(ResourceGraph().load(declarations))
        assert refs.index("file:/opt/app.jar") < refs.index("template:/etc/init/app.conf")
        assert refs.index("template:/etc/init/app.conf") < refs.index("service:app")

    def test_notifications_do_not_reorder(self):
        plan = ResourceGraph().load(
            [decl("service:app"), decl("template:/etc/app.yml", notifies=["service:app"])]
        )
        assert order(plan) == ["service:app", "template:/etc/app.yml"]

    def test_empty_plan(self):
        plan = ResourceGraph().load([])
        assert len(plan) == 0


class TestRejection:
    def test_two_node_cycle(self):
        with pytest.raises(CycleError) as exc_info:
            ResourceGraph().load(
                [decl("file:/a", requires=["file:/b"]), decl("file:/b", requires=["file:/a"])]
            )
        assert exc_info.value.cycle in (
            ["file:/a", "file:/b", "file:/a"],
            ["file:/b", "file:/a", "file:/b"],
        )

    def test_self_cycle(self):
        with pytest.raises(CycleError):
            ResourceGraph().load([decl("file:/a", requires=["file:/a"])])

    def test_cycle_reported_without_downstream_nodes(self):
        with pytest.raises(CycleError) as exc_info:
            ResourceGraph().load(
                [
                    decl("service:app", requires=["file:/a"]),
                    decl("file:/a", requires=["file:/b"]),
                    decl("file:/b", requires=["file:/a"]),
                ]
            )
        assert "service:app" not in exc_info.value.cycle
        assert "Dependency cycle detected" in exc_info.value.message

    def test_duplicate_identity(self):
        with pytest.raises(DuplicateIdentityError) as exc_info:
            ResourceGraph().load([decl("file:/etc/app.yml"), decl("file:/etc/app.yml")])
        assert exc_info.value.kind == "file"
        assert exc_info.value.identity == "/etc/app.yml"

    def test_same_identity_different_kind_is_allowed(self):
        plan = ResourceGraph().load([decl("file:/x"), decl("service:/x")])
        assert len(plan) == 2

    def test_unknown_requirement(self):
        with pytest.raises(UnknownReferenceError) as exc_info:
            ResourceGraph().load([decl("service:app", requires=["file:/missing"])])
        assert exc_info.value.target == "file:/missing"

    def test_unknown_notification_target(self):
        with pytest.raises(UnknownReferenceError):
            ResourceGraph().load([decl("template:/etc/app.yml", notifies=["service:app"])])
