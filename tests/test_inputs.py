"""
Tests for configuration models and input loaders.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from solbatch.core.inputs import (
    describe,
    load_app_config,
    load_extraction_config,
    load_templates,
    read_columns_from_csv,
    read_sols,
    validate_split_rules,
)
from solbatch.errors import ConfigurationError, TemplateError
from solbatch.models import AppConfig, ColumnSpec, ExtractionConfig

from conftest import write_template, write_yaml


class TestAppConfig:
    """Tests for the AppConfig model."""

    def test_camel_case_keys_and_sid_alias(self, app_config_data) -> None:
        cfg = AppConfig.model_validate(app_config_data)

        assert cfg.db_name == "branches"
        assert cfg.concurrency == 4
        assert cfg.max_workers == 4
        assert cfg.min_workers == 2
        assert (cfg.high_watermark, cfg.low_watermark) == (20, 5)

    def test_min_workers_clamped_to_concurrency(self, app_config_data) -> None:
        cfg = AppConfig.model_validate({**app_config_data, "concurrency": 1})

        assert cfg.min_workers == 1

    def test_zero_concurrency_rejected(self, app_config_data) -> None:
        with pytest.raises(ValidationError):
            AppConfig.model_validate({**app_config_data, "concurrency": 0})

    def test_inverted_watermarks_rejected(self, app_config_data) -> None:
        with pytest.raises(ValidationError, match="lowWatermark"):
            AppConfig.model_validate(
                {**app_config_data, "highWatermark": 3, "lowWatermark": 10}
            )

    def test_describe_hides_password(self, app_config_data) -> None:
        text = describe(AppConfig.model_validate(app_config_data))

        assert "secret" not in text
        assert "batch@localhost:5432/branches" in text


class TestExtractionConfig:
    """Tests for the ExtractionConfig model."""

    def test_defaults(self, run_config_data) -> None:
        cfg = ExtractionConfig.model_validate(run_config_data)

        assert cfg.split_rules == {}
        assert cfg.merge.enabled
        assert cfg.merge_output_path == cfg.spool_output_path

    def test_split_rules_must_name_known_procedures(self, run_config_data) -> None:
        with pytest.raises(ValidationError, match="unknown procedures"):
            ExtractionConfig.model_validate(
                {**run_config_data, "splitRules": {"P9": ["X"]}}
            )

    def test_empty_split_column_list_rejected(self, run_config_data) -> None:
        with pytest.raises(ValidationError):
            ExtractionConfig.model_validate({**run_config_data, "splitRules": {"P1": []}})

    def test_duplicate_procedures_rejected(self, run_config_data) -> None:
        with pytest.raises(ValidationError, match="duplicate"):
            ExtractionConfig.model_validate({**run_config_data, "procedures": ["P1", "P1"]})

    def test_merge_extension_normalized(self, run_config_data) -> None:
        cfg = ExtractionConfig.model_validate(
            {**run_config_data, "merge": {"extension": "txt", "removeSpools": True}}
        )

        assert cfg.merge.extension == ".txt"
        assert cfg.merge.remove_spools


class TestConfigFiles:
    """Tests for load_app_config() / load_extraction_config()."""

    def test_yaml_file(self, tmp_path: Path, app_config_data) -> None:
        path = write_yaml(tmp_path / "app.yaml", app_config_data)

        assert load_app_config(path).db_user == "batch"

    def test_json_file(self, tmp_path: Path, run_config_data) -> None:
        path = tmp_path / "run.json"
        path.write_text(json.dumps(run_config_data), encoding="utf-8")

        assert load_extraction_config(path).package_name == "PKG_LOAD"

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="does not exist"):
            load_app_config(tmp_path / "nope.yaml")

    def test_not_a_mapping(self, tmp_path: Path) -> None:
        path = tmp_path / "run.yaml"
        path.write_text("- just\n- a list\n", encoding="utf-8")

        with pytest.raises(ConfigurationError, match="mapping"):
            load_extraction_config(path)

    def test_invalid_values(self, tmp_path: Path, app_config_data) -> None:
        path = write_yaml(tmp_path / "app.yaml", {**app_config_data, "concurrency": "many"})

        with pytest.raises(ConfigurationError, match="Invalid application configuration"):
            load_app_config(path)


class TestReadSols:
    """Tests for read_sols()."""

    def test_trims_skips_and_dedups(self, tmp_path: Path) -> None:
        path = tmp_path / "sols.txt"
        path.write_text("  A \n\n# comment\nB\r\nA\nC\n", encoding="utf-8")

        assert read_sols(path) == ["A", "B", "C"]

    def test_empty_file(self, tmp_path: Path) -> None:
        path = tmp_path / "sols.txt"
        path.write_text("", encoding="utf-8")

        assert read_sols(path) == []

    def test_unreadable_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="SOL IDs"):
            read_sols(tmp_path / "missing.txt")


class TestTemplates:
    """Tests for template loading."""

    def test_header_row_layout(self, tmp_path: Path) -> None:
        path = write_template(tmp_path, "P1", ["SOL_ID", "AMOUNT", "CURRENCY"])

        assert [c.name for c in read_columns_from_csv(path)] == [
            "SOL_ID",
            "AMOUNT",
            "CURRENCY",
        ]

    def test_one_row_per_column_layout(self, tmp_path: Path) -> None:
        path = tmp_path / "P1.csv"
        path.write_text(
            "\ufeffname,type\nSOL_ID,VARCHAR2\nAMOUNT,NUMBER\n", encoding="utf-8"
        )

        columns = read_columns_from_csv(path)

        assert [c.name for c in columns] == ["SOL_ID", "AMOUNT"]
        assert columns[1].attributes == {"type": "NUMBER"}

    def test_empty_template(self, tmp_path: Path) -> None:
        path = tmp_path / "P1.csv"
        path.write_text("\n", encoding="utf-8")

        with pytest.raises(TemplateError, match="empty"):
            read_columns_from_csv(path)

    def test_duplicate_columns(self, tmp_path: Path) -> None:
        path = write_template(tmp_path, "P1", ["A", "B", "A"])

        with pytest.raises(TemplateError, match="repeats"):
            read_columns_from_csv(path)

    def test_load_templates_missing_file(self, tmp_path: Path) -> None:
        write_template(tmp_path, "P1", ["A"])

        with pytest.raises(TemplateError, match="P2"):
            load_templates(["P1", "P2"], tmp_path)

    def test_template_error_is_configuration_error(self) -> None:
        assert issubclass(TemplateError, ConfigurationError)

    def test_validate_split_rules(self) -> None:
        templates = {"P1": [ColumnSpec("A"), ColumnSpec("B")]}

        validate_split_rules({"P1": ["B"]}, templates)
        with pytest.raises(ConfigurationError, match="C"):
            validate_split_rules({"P1": ["C"]}, templates)
