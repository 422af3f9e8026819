"""Unit tests for configuration."""

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from rnaseq_explorer.config import Config, CONFIG_TEMPLATE, get_config, set_config


@pytest.fixture(autouse=True)
def reset_global_config():
    set_config(None)
    yield
    set_config(None)


class TestConfig:
    """Tests for configuration loading."""

    def test_defaults(self):
        config = Config()

        assert config.defaults.cpm_threshold == 0.5
        assert config.defaults.min_samples is None
        assert config.inputs.sample_id_width == 7
        assert config.inputs.factor_columns == ["CellType", "Status"]
        assert config.paths.output_dir == Path("plots")

    def test_yaml_round_trip(self, tmp_path):
        config = Config(defaults={"cpm_threshold": 1.0, "min_samples": 3})
        path = tmp_path / "config.yaml"

        config.to_yaml(path)
        loaded = Config.from_yaml(path)

        assert loaded.defaults.cpm_threshold == 1.0
        assert loaded.defaults.min_samples == 3
        assert isinstance(yaml.safe_load(path.read_text())["paths"]["output_dir"], str)

    def test_template_is_valid(self, tmp_path):
        path = tmp_path / "rnaseq_explorer.yaml"
        path.write_text(CONFIG_TEMPLATE)

        config = Config.from_yaml(path)

        assert config.plots.n_variable_genes == 500
        assert config.inputs.factor_levels == {}

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("RNAEXP_DEFAULTS__CPM_THRESHOLD", "2.5")
        monkeypatch.setenv("RNAEXP_LOG_LEVEL", "DEBUG")

        config = Config()

        assert config.defaults.cpm_threshold == 2.5
        assert config.log_level == "DEBUG"

    @pytest.mark.parametrize("section,values", [
        ("defaults", {"cpm_threshold": 0}),
        ("defaults", {"min_samples": 0}),
        ("defaults", {"prior_count": -1}),
        ("inputs", {"sample_id_width": 0}),
    ])
    def test_invalid_values(self, section, values):
        with pytest.raises(ValidationError):
            Config(**{section: values})

    def test_get_config_reads_working_directory(self, tmp_path, monkeypatch):
        (tmp_path / "rnaseq_explorer.yaml").write_text("defaults:\n  cpm_threshold: 3.0\n")
        monkeypatch.chdir(tmp_path)

        assert get_config().defaults.cpm_threshold == 3.0

    def test_get_config_is_cached(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert get_config() is get_config()
