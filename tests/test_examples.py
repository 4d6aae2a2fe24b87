"""Tests that the shipped example plans load and order correctly."""

from pathlib import Path

from convergent.config.loader import load_plan
from convergent.graph import ResourceGraph

EXAMPLES = Path(__file__).resolve().parent.parent / "examples"


def test_baragon_plan_orders_service_last():
    loaded = load_plan(EXAMPLES / "baragon" / "plan.yaml")
    plan = ResourceGraph().load(loaded.declarations)

    assert [str(ref) for ref in plan.refs] == [
        "file:/usr/share/java/BaragonService-0.1.5.jar",
        "template:/etc/baragon/service.yml",
        "template:/etc/init/baragon-server.conf",
        "service:baragon-server",
    ]
    jar = plan.declarations[0]
    assert jar.get("backup") == 5
    assert jar.get("mode") == 0o644


def test_baragon_templates_render(settings):
    from convergent.backends import default_registry

    loaded = load_plan(EXAMPLES / "baragon" / "plan.yaml")
    registry = default_registry(settings, base_dir=loaded.base_dir)
    template_backend = registry.get("template")

    init_conf = next(d for d in loaded.declarations if d.identity.endswith("baragon-server.conf"))
    rendered = template_backend.desired_content(init_conf).decode()

    assert (
        "exec java -jar /usr/share/java/BaragonService-0.1.5.jar server /etc/baragon/service.yml"
        in rendered
    )
