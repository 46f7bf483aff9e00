"""Tests for stage catalog loading and template selection."""

import json
import logging

import pytest

from journey_engine.exceptions import CatalogError
from journey_engine.models.conditions import parse_condition
from journey_engine.models.journey import StageCatalogDocument
from journey_engine.services.catalog import StageCatalog

from conftest import make_stage


class TestSelectTemplates:
    """Persona lookup and 3-5 clamping on the packaged catalog."""

    def test_fewer_than_minimum_returns_all(self, catalog):
        templates = catalog.select_templates("busy-3day-cut")
        assert len(templates) == 2

    def test_more_than_maximum_returns_first_five(self, catalog):
        templates = catalog.select_templates("athlete-gain")
        assert [t.order_index for t in templates] == [1, 2, 3, 4, 5]

    def test_unknown_persona_falls_back_to_default(self, catalog, caplog):
        with caplog.at_level(logging.WARNING):
            templates = catalog.select_templates("astronaut-bulk")

        assert templates == catalog.select_templates("rookie-cut")
        assert "astronaut-bulk" in caplog.text

    def test_missing_persona_uses_default(self, catalog):
        assert catalog.resolve_persona(None) == "rookie-cut"

    def test_selection_is_deterministic(self, catalog):
        first = [t.code for t in catalog.select_templates("recomp-balanced")]
        second = [t.code for t in catalog.select_templates("recomp-balanced")]
        assert first == second

    def test_sorted_by_order_index(self):
        document = StageCatalogDocument(
            version="test",
            personas={"p": [make_stage("c", 3), make_stage("a", 1), make_stage("b", 2)]},
        )
        catalog = StageCatalog(document, default_persona="p")

        assert [t.code for t in catalog.select_templates("p")] == ["a", "b", "c"]

    def test_every_packaged_condition_parses(self, catalog):
        """Catalog checks must all be known condition kinds."""
        for persona in catalog.personas:
            for template in catalog.document.personas[persona]:
                for task in template.tasks:
                    assert parse_condition(task.check) is not None, task.key


class TestLoad:
    def test_missing_file(self, tmp_path):
        with pytest.raises(CatalogError) as exc_info:
            StageCatalog.load(tmp_path / "nope.json")
        assert exc_info.value.status_code == 500

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "catalog.json"
        path.write_text("{not json")
        with pytest.raises(CatalogError):
            StageCatalog.load(path)

    def test_stage_without_tasks_is_rejected(self, tmp_path):
        path = tmp_path / "catalog.json"
        path.write_text(json.dumps({
            "version": "1",
            "personas": {"rookie-cut": [{"code": "x", "order_index": 1, "title": "X", "tasks": []}]},
        }))
        with pytest.raises(CatalogError):
            StageCatalog.load(path)

    def test_default_persona_must_exist(self):
        document = StageCatalogDocument(version="1", personas={"p": [make_stage("a", 1)]})
        with pytest.raises(CatalogError):
            StageCatalog(document, default_persona="rookie-cut")
