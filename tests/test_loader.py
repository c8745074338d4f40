"""Tests for the content loader, settings and logging setup."""

import json
from dataclasses import dataclass, field

import pytest

from defpatch import (
    ContentPatcher,
    DefinitionRegistry,
    Diagnostics,
    IndexedDefinitions,
    PatchInterpreter,
    PatchSettings,
    configure_logging,
    get_logger,
    load_settings,
)


@dataclass
class Resource:
    Id: int = 0
    Name: str = ""
    Value: float = 0.0


@dataclass
class Ingredient:
    ResourceId: int = 0
    Amount: float = 0.0


@dataclass
class Recipe:
    RecipeId: int = 0
    Inputs: list[Ingredient] = field(default_factory=list)
    Byproducts: list[Resource] = field(default_factory=list)


@dataclass
class GameSettings:
    Speed: float = 1.0


@pytest.fixture
def world(store, diagnostics):
    resources = IndexedDefinitions([Resource(0, "Iron")], id_field="Id")
    settings = GameSettings()
    registry = DefinitionRegistry()
    registry.register("Resource", Resource, resources)
    registry.register_dynamic("Game", GameSettings, lambda: [settings])
    interpreter = PatchInterpreter(store=store, globals_={}, diagnostics=diagnostics)
    loader = ContentPatcher(registry, PatchSettings(), interpreter)
    return loader, resources, settings


def write(path, text):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


class TestApplyText:
    def test_document(self, world):
        loader, resources, _ = world
        loader.apply_text(
            """
            Resource:
              - add: { Id: 10, Name: Foo }
              - update: { Id: 10, $Name: '"Foo" .. "Bar"' }
            """
        )
        assert resources[resources.get_index(10)].Name == "FooBar"

    def test_unknown_type_is_a_warning(self, world, diagnostics):
        loader, resources, _ = world
        loader.apply_text("Planet:\n  - add: { Id: 1 }\nResource:\n  - remove: 0\n")
        assert "unknown definition type Planet" in diagnostics.warnings[0].message
        assert resources[0] is None

    def test_section_must_be_a_list(self, world, diagnostics):
        loader, _, _ = world
        loader.apply_text("Resource: { add: { Id: 1 } }")
        assert "expects a list of instructions" in diagnostics.errors[0].message

    def test_invalid_yaml_is_reported(self, world, diagnostics):
        loader, _, _ = world
        loader.apply_text("Resource: [", source="broken.yml")
        [error] = diagnostics.errors
        assert error.mark.source == "broken.yml"

    def test_test_abort_stops_only_that_document(self, world):
        loader, resources, _ = world
        loader.apply_text(
            "Resource:\n"
            "  - test: 'false'\n"
            "  - update: { Id: 0, Value: 1 }\n"
            "---\n"
            "Resource:\n"
            "  - update: { Id: 0, Name: Steel }\n"
        )
        assert resources[0].Value == 0
        assert resources[0].Name == "Steel"

    def test_identity_rule_follows_registered_types(self, store, diagnostics):
        recipes: list[Recipe] = []
        registry = DefinitionRegistry()
        registry.register("Resource", Resource, [])
        registry.register("Recipe", Recipe, recipes)
        interpreter = PatchInterpreter(store=store, globals_={}, diagnostics=diagnostics)
        loader = ContentPatcher(registry, PatchSettings(), interpreter)
        store.set("iron", 7.0)
        loader.apply_text(
            "Recipe:\n"
            "  - add:\n"
            "      RecipeId: 0\n"
            "      Inputs: { $add: [ { $ResourceId: iron, Amount: 2 } ] }\n"
            "      Byproducts: { $add: [ { Name: slag }, { $Id: scrap, Name: scrap } ] }\n"
        )
        [recipe] = recipes
        assert recipe.Inputs == [Ingredient(7, 2.0)]
        assert store["iron"] == 7
        assert recipe.Byproducts[1].Id == 1
        assert store["scrap"] == 1

    def test_phases(self, world):
        loader, _, settings = world
        text = "Game:\n  - update: { $where: 'true', Speed: 3 }\n"
        loader.apply_text(text, phase="static")
        assert settings.Speed == 1
        loader.apply_text(text, phase="dynamic")
        assert settings.Speed == 3


class TestApplyAll:
    def test_files_in_order(self, world, tmp_path):
        loader, resources, _ = world
        write(tmp_path / "b" / "second.yaml", "Resource:\n  - update: { Id: 0, $Value: value * 2 }\n")
        write(tmp_path / "a" / "first.yml", "Resource:\n  - update: { Id: 0, Value: 5 }\n")
        write(tmp_path / "notes.txt", "Resource: [not, yaml, patches]")
        loader.apply_all([tmp_path])
        assert resources[0].Value == 10

    def test_store_reset_once_per_run(self, world, tmp_path, store):
        loader, _, _ = world
        write(tmp_path / "state.yml", "Resource:\n  - state: { runs: value + 1 }\n")
        loader.apply_all([tmp_path])
        loader.apply_all([tmp_path])
        assert store["runs"] == 1

    def test_store_kept_without_reset(self, store, diagnostics, tmp_path):
        registry = DefinitionRegistry()
        registry.register("Resource", Resource, [])
        interpreter = PatchInterpreter(store=store, globals_={}, diagnostics=diagnostics)
        loader = ContentPatcher(registry, PatchSettings(reset_shared_state=False), interpreter)
        write(tmp_path / "state.yml", "Resource:\n  - state: { runs: value + 1 }\n")
        loader.apply_all([tmp_path])
        loader.apply_all([tmp_path])
        assert store["runs"] == 2

    def test_unreadable_file(self, world, tmp_path, diagnostics):
        loader, _, _ = world
        (tmp_path / "bad.yml").write_bytes(b"\xff\xfe\x00")
        loader.apply_content_patches(tmp_path)
        assert "cannot read patch file" in diagnostics.errors[0].message


class TestUnhandled:
    @pytest.fixture
    def failing(self):
        class Exploding(list):
            def append(self, item):
                raise RuntimeError("disk on fire")

        registry = DefinitionRegistry()
        registry.register("Resource", Resource, Exploding())
        registry.register("Other", Resource, [])
        return registry

    def test_reported_and_isolated(self, failing, store):
        seen = []
        interpreter = PatchInterpreter(
            store=store, globals_={}, diagnostics=Diagnostics(on_unhandled=seen.append)
        )
        loader = ContentPatcher(failing, PatchSettings(), interpreter)
        loader.apply_text("Resource:\n  - add: { Id: 1 }\nOther:\n  - add: { Id: 2 }\n")
        assert [str(e) for e in seen] == ["disk on fire"]
        assert failing.get("Other").collection == [Resource(2)]

    def test_stop_on_unhandled(self, failing, store):
        interpreter = PatchInterpreter(store=store, globals_={}, diagnostics=Diagnostics())
        loader = ContentPatcher(failing, PatchSettings(stop_on_unhandled=True), interpreter)
        with pytest.raises(RuntimeError, match="disk on fire"):
            loader.apply_text("Resource:\n  - add: { Id: 1 }\n")


class TestSettings:
    def test_defaults(self):
        settings = PatchSettings()
        assert settings.file_patterns == ["*.yml", "*.yaml"]
        assert settings.reset_shared_state

    def test_load_settings(self, tmp_path):
        path = write(tmp_path / "defpatch.yml", "log_level: DEBUG\nfile_patterns: ['*.patch']\n")
        settings = load_settings(path)
        assert settings.log_level == "DEBUG"
        assert settings.file_patterns == ["*.patch"]
        assert settings.stop_on_unhandled is False

    def test_empty_settings_file(self, tmp_path):
        assert load_settings(write(tmp_path / "empty.yml", "")) == PatchSettings()


class TestLogging:
    def test_json_output(self, capsys):
        configure_logging(level="INFO", json_format=True)
        get_logger("defpatch.test").info("instruction_applied", line=3)
        event = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
        assert event["event"] == "instruction_applied"
        assert event["logger"] == "defpatch.test"
        assert event["service"] == "defpatch"
        assert event["line"] == 3

    def test_level_filter(self, capsys):
        PatchSettings(log_level="WARNING", json_logs=True).configure_logging()
        get_logger("defpatch.test").info("hidden")
        assert capsys.readouterr().err == ""
