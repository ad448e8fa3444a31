"""
Unit tests for treeme.config module

Tests cover:
1. Default values and validation
2. Nested updates
3. Saving and loading YAML/JSON files
4. Environment variable overrides
5. Configuration warnings
"""

import json
import pytest
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from treeme.config import (
    DATA_DIR,
    PaletteConfig,
    PipelineConfig,
    TreeStyleConfig,
    YAML_AVAILABLE,
    get_default_config,
    load_config_from_env,
    load_config_from_file,
    validate_config,
    _parse_env_value,
)


class TestDefaults:
    """Tests for default configuration values."""

    def test_style_defaults(self):
        style = get_default_config().style
        assert style.offset_step_fraction == 0.02
        assert style.offset_start_fraction == 0.20
        assert style.offset_end_fraction == 1.30
        assert style.offset_cycle == 3
        assert style.clade_font_size_mm == 5.0

    def test_pipeline_defaults(self):
        cfg = get_default_config()
        assert cfg.paper_size == "A4p"
        assert cfg.log_level == "INFO"
        assert cfg.overwrite_existing is True

    def test_packaged_palettes(self):
        palettes = PaletteConfig()
        assert palettes.colors_file == DATA_DIR / "colors.tsv"
        assert palettes.shapes_file == DATA_DIR / "shapes.tsv"
        assert palettes.colors_file.exists()
        assert palettes.shapes_file.exists()

    def test_string_paths_converted(self):
        palettes = PaletteConfig(colors_file="my_colors.tsv")
        assert palettes.colors_file == Path("my_colors.tsv")

    def test_frozen(self):
        cfg = get_default_config()
        with pytest.raises(Exception):
            cfg.paper_size = "A3l"


class TestValidation:
    """Tests for __post_init__ validation."""

    def test_invalid_log_level(self):
        with pytest.raises(ValueError, match="log_level"):
            PipelineConfig(log_level="LOUD")

    def test_non_positive_step(self):
        with pytest.raises(ValueError):
            TreeStyleConfig(offset_step_fraction=0)

    def test_reversed_offset_range(self):
        with pytest.raises(ValueError):
            TreeStyleConfig(offset_start_fraction=0.5, offset_end_fraction=0.4)

    def test_zero_cycle(self):
        with pytest.raises(ValueError):
            TreeStyleConfig(offset_cycle=0)

    def test_legend_position_list(self):
        style = TreeStyleConfig(legend_position=[0.2, 0.5])
        assert style.legend_position == (0.2, 0.5)

    def test_legend_position_wrong_length(self):
        with pytest.raises(ValueError):
            TreeStyleConfig(legend_position=(0.1, 0.2, 0.3))


class TestUpdate:
    """Tests for PipelineConfig.update."""

    def test_top_level(self):
        cfg = get_default_config().update(paper_size="A3l")
        assert cfg.paper_size == "A3l"

    def test_nested(self):
        cfg = get_default_config().update(style__clade_font_size_mm=4.0)
        assert cfg.style.clade_font_size_mm == 4.0
        assert cfg.style.offset_cycle == 3

    def test_nested_path_converted(self):
        cfg = get_default_config().update(palettes__colors_file="lab.tsv")
        assert cfg.palettes.colors_file == Path("lab.tsv")

    def test_update_returns_new_object(self):
        base = get_default_config()
        base.update(paper_size="A2p")
        assert base.paper_size == "A4p"

    def test_nested_validation_runs(self):
        with pytest.raises(ValueError):
            get_default_config().update(style__offset_cycle=0)

    def test_unknown_field(self):
        with pytest.raises(TypeError):
            get_default_config().update(not_a_field=1)

    def test_unknown_section(self):
        with pytest.raises(TypeError, match="section"):
            get_default_config().update(colors__na_color="red")


class TestFileRoundTrip:
    """Tests for saving and loading configuration files."""

    def test_json(self, tmp_path):
        cfg = get_default_config().update(paper_size="A3p", style__offset_cycle=2)
        path = tmp_path / "cfg.json"
        cfg.to_json(path)

        data = json.loads(path.read_text())
        assert data["paper_size"] == "A3p"
        assert isinstance(data["palettes"]["colors_file"], str)

        loaded = load_config_from_file(path)
        assert loaded == cfg

    @pytest.mark.skipif(not YAML_AVAILABLE, reason="PyYAML not installed")
    def test_yaml(self, tmp_path):
        cfg = get_default_config().update(style__legend_position=(0.3, 0.4))
        path = tmp_path / "cfg.yaml"
        cfg.to_yaml(path)
        assert load_config_from_file(path) == cfg

    @pytest.mark.skipif(not YAML_AVAILABLE, reason="PyYAML not installed")
    def test_partial_yaml(self, tmp_path):
        path = tmp_path / "cfg.yml"
        path.write_text("paper_size: A2l\nstyle:\n  clade_font_size_mm: 3\n")
        cfg = load_config_from_file(path)
        assert cfg.paper_size == "A2l"
        assert cfg.style.clade_font_size_mm == 3
        assert cfg.style.offset_step_fraction == 0.02

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config_from_file(tmp_path / "missing.json")

    @pytest.mark.parametrize("name", [
        "cfg.json",
        pytest.param("cfg.yaml", marks=pytest.mark.skipif(
            not YAML_AVAILABLE, reason="PyYAML not installed")),
    ])
    def test_save_by_suffix(self, tmp_path, name):
        cfg = get_default_config().update(paper_size="A2l")
        path = tmp_path / "out" / name
        cfg.save(path)
        assert load_config_from_file(path) == cfg

    def test_save_unsupported_suffix(self, tmp_path):
        with pytest.raises(ValueError, match="Unsupported"):
            get_default_config().save(tmp_path / "cfg.ini")

    def test_unsupported_format(self, tmp_path):
        path = tmp_path / "cfg.toml"
        path.write_text("paper_size = 'A4p'\n")
        with pytest.raises(ValueError, match="Unsupported"):
            load_config_from_file(path)


class TestEnvironment:
    """Tests for TREEME_ environment overrides."""

    @pytest.mark.parametrize("raw,expected", [
        ("true", True),
        ("YES", True),
        ("false", False),
        ("no", False),
        ("3", 3),
        ("0.5", 0.5),
        ("A3l", "A3l"),
    ])
    def test_parse_env_value(self, raw, expected):
        assert _parse_env_value(raw) == expected

    def test_prefixed_variables(self, monkeypatch):
        monkeypatch.setenv("TREEME_PAPER_SIZE", "A3l")
        monkeypatch.setenv("TREEME_STYLE__OFFSET_CYCLE", "4")
        monkeypatch.setenv("OTHER_PAPER_SIZE", "A2p")
        overrides = load_config_from_env()
        assert overrides["paper_size"] == "A3l"
        assert overrides["style__offset_cycle"] == 4
        assert "other_paper_size" not in overrides

    def test_unrelated_variables_ignored(self, monkeypatch):
        monkeypatch.setenv("TREEME_HOME", "/opt/treeme")
        monkeypatch.setenv("TREEME_STYLE__NOT_A_SETTING", "1")
        monkeypatch.setenv("TREEME_COLORS__NA_COLOR", "red")
        monkeypatch.setenv("TREEME_PALETTES__NA_COLOR", "#333333")
        overrides = load_config_from_env()
        assert overrides == {"palettes__na_color": "#333333"}
        cfg = get_default_config().update(**overrides)
        assert cfg.palettes.na_color == "#333333"

    def test_section_name_alone_ignored(self, monkeypatch):
        monkeypatch.setenv("TREEME_STYLE", "big")
        assert "style" not in load_config_from_env()

    def test_applied_with_update(self, monkeypatch):
        monkeypatch.setenv("TREEME_STYLE__CLADE_FONT_SIZE_MM", "4.5")
        cfg = get_default_config().update(**load_config_from_env())
        assert cfg.style.clade_font_size_mm == 4.5


class TestValidateConfig:
    """Tests for configuration warnings."""

    def test_defaults_have_no_warnings(self):
        assert validate_config(get_default_config()) == []

    def test_missing_palette_file(self, tmp_path):
        cfg = get_default_config().update(palettes__colors_file=tmp_path / "none.tsv")
        warnings = validate_config(cfg)
        assert any("Color palette file not found" in w for w in warnings)

    def test_brackets_beyond_plot(self):
        cfg = get_default_config().update(style__x_expand_fraction=0.1)
        warnings = validate_config(cfg)
        assert any("clipped" in w for w in warnings)

    def test_tiny_step(self):
        cfg = get_default_config().update(style__offset_step_fraction=0.001)
        warnings = validate_config(cfg)
        assert any("very small" in w for w in warnings)
