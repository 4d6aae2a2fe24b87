"""Tests for plan and variables loading."""

import json

import pytest
from convergent.config.loader import (
    find_plan_file,
    load_plan,
    load_variables,
    parse_declaration,
    parse_mode,
    parse_var_overrides,
)
from convergent.config.settings import Settings
from convergent.core.errors import ConfigurationError, ValidationError
from convergent.resources.models import Notification, ResourceRef

PLAN_YAML = """
variables:
  baragon_jar: BaragonService-0.1.5.jar
  http_port: 8080

resources:
  - kind: file
    path: /usr/share/java/BaragonService-0.1.5.jar
    source: cache://Baragon/BaragonService/target/BaragonService-0.1.5.jar
    owner: root
    group: 0
    mode: "0644"
    backup: 5

  - kind: template
    path: /etc/init/baragon-server.conf
    source: templates/baragon-server.init.j2
    mode: 0644
    variables:
      config_yaml: /etc/baragon/service.yml
    requires: file:/usr/share/java/BaragonService-0.1.5.jar
    notifies:
      - service:baragon-server
      - target: service:baragon-server
        action: stop

  - kind: service
    name: baragon-server
    actions: [enable, start]
    supports:
      restart: true
"""


@pytest.fixture
def plan_file(tmp_path):
    path = tmp_path / "plan.yaml"
    path.write_text(PLAN_YAML)
    return path


class TestLoadPlan:
    def test_builds_declarations(self, plan_file):
        loaded = load_plan(plan_file)

        jar, init_conf, service = loaded.declarations
        assert str(jar.ref) == "file:/usr/share/java/BaragonService-0.1.5.jar"
        assert jar.get("mode") == 0o644
        assert jar.get("group") == "0"
        assert jar.get("backup") == 5
        assert init_conf.requires == (jar.ref,)
        assert init_conf.notifies == (
            Notification(ResourceRef("service", "baragon-server"), "restart"),
            Notification(ResourceRef("service", "baragon-server"), "stop"),
        )
        assert service.get("actions") == ("enable", "start")
        assert [d.index for d in loaded.declarations] == [0, 1, 2]
        assert loaded.base_dir == plan_file.parent

    def test_yaml_octal_mode(self, plan_file):
        init_conf = load_plan(plan_file).declarations[1]
        assert init_conf.get("mode") == 0o644

    def test_template_variables_are_merged(self, plan_file):
        init_conf = load_plan(plan_file, variables={"http_port": 9090}).declarations[1]
        assert dict(init_conf.get("variables")) == {
            "baragon_jar": "BaragonService-0.1.5.jar",
            "http_port": 9090,
            "config_yaml": "/etc/baragon/service.yml",
        }

    def test_declarations_are_read_only(self, plan_file):
        decl = load_plan(plan_file).declarations[0]
        with pytest.raises(TypeError):
            decl.attributes["mode"] = 0o777
        with pytest.raises(AttributeError):
            decl.identity = "/tmp/other"

    def test_json_plan(self, tmp_path):
        path = tmp_path / "plan.json"
        path.write_text(
            json.dumps({"resources": [{"kind": "service", "name": "app", "actions": ["start"]}]})
        )
        loaded = load_plan(path)
        assert str(loaded.declarations[0].ref) == "service:app"

    def test_empty_plan(self, tmp_path):
        path = tmp_path / "plan.yaml"
        path.write_text("")
        assert load_plan(path).declarations == []

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="Cannot read"):
            load_plan(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "plan.yaml"
        path.write_text("resources: [\n")
        with pytest.raises(ConfigurationError, match="Cannot parse"):
            load_plan(path)

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "plan.yaml"
        path.write_text("- kind: file\n")
        with pytest.raises(ConfigurationError):
            load_plan(path)


class TestParseDeclaration:
    def test_unknown_kind(self):
        with pytest.raises(ValidationError, match="unknown kind 'package'"):
            parse_declaration({"kind": "package", "name": "nginx"}, 0, {})

    def test_missing_identity(self):
        with pytest.raises(ValidationError, match="'path' is required"):
            parse_declaration({"kind": "file"}, 0, {})

    def test_relative_path(self):
        with pytest.raises(ValidationError, match="must be absolute"):
            parse_declaration({"kind": "file", "path": "etc/app.yml"}, 0, {})

    def test_unknown_attribute(self):
        with pytest.raises(ValidationError, match="unknown attributes retries"):
            parse_declaration({"kind": "service", "name": "app", "retries": 3}, 0, {})

    def test_content_and_source_exclusive(self):
        with pytest.raises(ValidationError, match="mutually exclusive"):
            parse_declaration(
                {"kind": "file", "path": "/a", "content": "x", "source": "cache://a"}, 0, {}
            )

    def test_template_needs_source(self):
        with pytest.raises(ValidationError, match="need a 'source'"):
            parse_declaration({"kind": "template", "path": "/a"}, 0, {})

    def test_invalid_mode(self):
        with pytest.raises(ValidationError, match="invalid mode"):
            parse_declaration({"kind": "file", "path": "/a", "mode": "rw-r--r--"}, 0, {})

    @pytest.mark.parametrize("backup,expected", [(False, 0), (None, 0), (3, 3)])
    def test_backup_values(self, backup, expected):
        decl = parse_declaration({"kind": "file", "path": "/a", "backup": backup}, 0, {})
        assert decl.get("backup") == expected

    def test_backup_true_uses_default(self):
        decl = parse_declaration({"kind": "file", "path": "/a", "backup": True}, 0, {})
        assert "backup" not in decl.attributes

    def test_negative_backup(self):
        with pytest.raises(ValidationError, match="non-negative"):
            parse_declaration({"kind": "file", "path": "/a", "backup": -1}, 0, {})

    def test_declared_restart_is_rejected(self):
        with pytest.raises(ValidationError, match="notify the service"):
            parse_declaration({"kind": "service", "name": "app", "actions": ["restart"]}, 0, {})

    def test_unknown_service_action(self):
        with pytest.raises(ValidationError, match="unknown action 'reload'"):
            parse_declaration({"kind": "service", "name": "app", "actions": ["reload"]}, 0, {})

    def test_conflicting_actions(self):
        with pytest.raises(ValidationError, match="conflicting actions"):
            parse_declaration(
                {"kind": "service", "name": "app", "actions": ["start", "stop"]}, 0, {}
            )

    def test_service_defaults_to_nothing(self):
        decl = parse_declaration({"kind": "service", "name": "app"}, 0, {})
        assert decl.get("actions") == ("nothing",)

    def test_bad_reference(self):
        with pytest.raises(ValidationError, match="expected kind:identity"):
            parse_declaration({"kind": "service", "name": "app", "requires": ["app"]}, 0, {})

    def test_notification_needs_target(self):
        with pytest.raises(ValidationError, match="need a 'target'"):
            parse_declaration(
                {"kind": "file", "path": "/a", "notifies": [{"action": "restart"}]}, 0, {}
            )

    def test_nested_template_variable(self):
        with pytest.raises(ConfigurationError, match="must be a scalar"):
            parse_declaration(
                {"kind": "template", "path": "/a", "content": "x", "variables": {"a": [1]}}, 0, {}
            )


class TestVariables:
    def test_load_variables(self, tmp_path):
        path = tmp_path / "vars.yaml"
        path.write_text("baragon_jar: app.jar\nhttp_port: 8080\n")
        assert load_variables(path) == {"baragon_jar": "app.jar", "http_port": 8080}

    def test_load_variables_rejects_nesting(self, tmp_path):
        path = tmp_path / "vars.yaml"
        path.write_text("zk:\n  quorum: localhost\n")
        with pytest.raises(ConfigurationError, match="must be a scalar"):
            load_variables(path)

    def test_overrides(self):
        assert parse_var_overrides(["port=9090", "name=app", "debug=true", "empty="]) == {
            "port": 9090,
            "name": "app",
            "debug": True,
            "empty": "",
        }

    def test_override_keeps_non_scalar_as_text(self):
        assert parse_var_overrides(["hosts=[a, b]"]) == {"hosts": "[a, b]"}

    def test_invalid_override(self):
        with pytest.raises(ConfigurationError, match="expected KEY=VALUE"):
            parse_var_overrides(["novalue"])


class TestFindPlanFile:
    def test_explicit_path(self, plan_file):
        assert find_plan_file(plan_file) == plan_file

    def test_explicit_missing(self, tmp_path):
        assert find_plan_file(tmp_path / "missing.yaml") is None

    def test_search_order(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert find_plan_file() is None
        (tmp_path / ".convergent").mkdir()
        (tmp_path / ".convergent" / "plan.yaml").write_text("resources: []\n")
        assert find_plan_file() == tmp_path / ".convergent" / "plan.yaml"
        (tmp_path / "convergent.yaml").write_text("resources: []\n")
        assert find_plan_file() == tmp_path / "convergent.yaml"


@pytest.mark.parametrize(
    "value,expected", [(0o644, 0o644), ("0644", 0o644), ("644", 0o644), ("0o755", 0o755)]
)
def test_parse_mode(value, expected):
    assert parse_mode(value) == expected


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("CONVERGENT_BACKUP_COUNT", "3")
    monkeypatch.setenv("CONVERGENT_SERVICE_RESTART_COMMAND", "initctl restart {name}")
    settings = Settings(_env_file=None)
    assert settings.backup_count == 3
    assert settings.service_restart_command == "initctl restart {name}"
