"""
Unit tests for treeme.metadata module

Tests cover:
1. Metadata and clade TSV parsing with edge cases
2. Column validation and the meta file error message
3. Tree tip / metadata consistency reporting
4. Color and shape palette loading
"""

import logging
import pytest
import pandas as pd
from pathlib import Path

# Import functions to test
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from treeme.metadata import (
    parse_metadata_tsv,
    parse_clades_tsv,
    validate_required_columns,
    validate_metadata_columns,
    check_taxa_names,
    load_color_palette,
    load_shape_palette,
    marker_for,
)
from treeme.config import DATA_DIR


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def test_data_dir():
    """Return path to test data directory."""
    return Path(__file__).parent / "data"


@pytest.fixture
def meta_tsv(test_data_dir):
    return test_data_dir / "meta.tsv"


@pytest.fixture
def clades_tsv(test_data_dir):
    return test_data_dir / "clades.tsv"


def write_tsv(path, text):
    path.write_text(text, encoding="utf-8")
    return path


# ============================================================================
# Metadata Parsing
# ============================================================================

class TestParseMetadata:
    """Tests for the metadata TSV reader."""

    def test_reads_all_rows(self, meta_tsv):
        df = parse_metadata_tsv(meta_tsv)
        assert list(df.columns) == ["strain", "lineage", "status"]
        assert list(df["strain"]) == ["A", "B", "C", "D", "E"]

    def test_empty_cell_is_missing(self, meta_tsv):
        df = parse_metadata_tsv(meta_tsv)
        assert pd.isna(df.loc[df["strain"] == "E", "status"].iloc[0])

    def test_values_kept_as_strings(self, tmp_path):
        path = write_tsv(tmp_path / "m.tsv", "taxon\tweek\nX\t01\nY\tNA\n")
        df = parse_metadata_tsv(path)
        assert list(df["week"]) == ["01", "NA"]

    def test_whitespace_stripped(self, tmp_path):
        path = write_tsv(tmp_path / "m.tsv", " taxon \tlineage\nX \t BA.1\n")
        df = parse_metadata_tsv(path)
        assert list(df.columns) == ["taxon", "lineage"]
        assert df.iloc[0].tolist() == ["X", "BA.1"]

    def test_duplicate_taxa_keep_first(self, tmp_path, caplog):
        path = write_tsv(tmp_path / "m.tsv", "taxon\tlineage\nX\tBA.1\nX\tBA.2\nY\tBA.5\n")
        with caplog.at_level(logging.WARNING, logger="treeme"):
            df = parse_metadata_tsv(path)
        assert list(df["taxon"]) == ["X", "Y"]
        assert df.loc[0, "lineage"] == "BA.1"
        assert "duplicate" in caplog.text

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            parse_metadata_tsv(tmp_path / "nope.tsv")

    def test_header_only(self, tmp_path):
        path = write_tsv(tmp_path / "m.tsv", "taxon\tlineage\n")
        with pytest.raises(pd.errors.EmptyDataError):
            parse_metadata_tsv(path)

    def test_latin1_fallback(self, tmp_path):
        path = tmp_path / "m.tsv"
        path.write_bytes("taxon\tcountry\nX\tCôte d'Ivoire\n".encode("latin-1"))
        df = parse_metadata_tsv(path)
        assert df.loc[0, "country"] == "Côte d'Ivoire"


class TestParseClades:
    """Tests for the clade TSV reader."""

    def test_reads_clades(self, clades_tsv):
        df = parse_clades_tsv(clades_tsv)
        assert list(df["clade_name"]) == ["Alpha", "Beta", "Beta.1", "Ghost"]
        assert df.loc[0, "mutations"] == "S:N501Y,S:A570D"

    def test_missing_column(self, tmp_path):
        path = write_tsv(tmp_path / "c.tsv", "clade_name\tmuts\nAlpha\tS:N501Y\n")
        with pytest.raises(ValueError, match="mutations"):
            parse_clades_tsv(path)

    def test_incomplete_rows_dropped(self, tmp_path):
        path = write_tsv(
            tmp_path / "c.tsv",
            "clade_name\tmutations\nAlpha\tS:N501Y\n\tS:K417N\nGamma\t\n",
        )
        df = parse_clades_tsv(path)
        assert list(df["clade_name"]) == ["Alpha"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            parse_clades_tsv(tmp_path / "nope.tsv")


# ============================================================================
# Column Validation
# ============================================================================

class TestColumnValidation:

    def test_required_columns_present(self):
        df = pd.DataFrame(columns=["a", "b"])
        assert validate_required_columns(df, ["a", "b"]) is True

    def test_required_columns_missing(self):
        df = pd.DataFrame(columns=["a"])
        with pytest.raises(ValueError) as exc:
            validate_required_columns(df, ["a", "b"], source="Palette")
        assert "Palette" in str(exc.value)
        assert "'b'" in str(exc.value)

    def test_metadata_columns_present(self, meta_tsv):
        meta = parse_metadata_tsv(meta_tsv)
        assert validate_metadata_columns(meta, ["lineage", "status"])

    def test_metadata_column_missing_message(self, meta_tsv):
        meta = parse_metadata_tsv(meta_tsv)
        with pytest.raises(ValueError) as exc:
            validate_metadata_columns(meta, ["lineage", "country"])
        assert str(exc.value) == (
            "CHECK YOUR META FILE. Check if this header is in the meta file: country"
        )


# ============================================================================
# Taxa Consistency
# ============================================================================

class TestCheckTaxaNames:
    """Tests for tree tip / metadata consistency reporting."""

    def test_missing_tip_reported(self, caplog):
        with caplog.at_level(logging.INFO, logger="treeme"):
            mismatch = check_taxa_names(["A", "B", "C"], ["A", "B"])
        assert mismatch == ["C"]
        assert "not present in meta file" in caplog.text
        assert "\tC" in caplog.text
        assert any(r.levelno == logging.WARNING for r in caplog.records)

    def test_all_present(self, caplog):
        with caplog.at_level(logging.INFO, logger="treeme"):
            mismatch = check_taxa_names(["A", "B"], ["B", "A", "Z"])
        assert mismatch == []
        assert "Good: All tree tip labels present in meta file" in caplog.text

    def test_order_follows_tree(self):
        assert check_taxa_names(["Z", "A", "Y"], ["A"]) == ["Z", "Y"]

    def test_extra_metadata_rows_ignored(self):
        assert check_taxa_names(["A"], ["A", "B", "C"]) == []


# ============================================================================
# Palettes
# ============================================================================

class TestPalettes:
    """Tests for color and shape palette loading."""

    def test_packaged_color_palette(self):
        palette = load_color_palette(DATA_DIR / "colors.tsv")
        assert palette["B.1.1.7"] == "#9D7ABE"
        assert list(palette)[0] == "B.1.1.7"

    def test_packaged_shape_palette(self):
        palette = load_shape_palette(DATA_DIR / "shapes.tsv")
        assert palette["Case"] == ("o", "#E63946")
        assert palette["Traveller"] == ("^", "#F1C40F")

    def test_color_palette_missing_column(self, tmp_path):
        path = write_tsv(tmp_path / "p.tsv", "categories\tcolour\nX\tred\n")
        with pytest.raises(ValueError):
            load_color_palette(path)

    def test_shape_palette_matplotlib_markers(self, tmp_path):
        path = write_tsv(
            tmp_path / "s.tsv",
            "shape_cats\tshapes_type\tshape_colors\nHospital\tP\tred\n",
        )
        assert load_shape_palette(path) == {"Hospital": ("P", "red")}

    def test_missing_palette_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_color_palette(tmp_path / "none.tsv")


class TestMarkerFor:

    @pytest.mark.parametrize("shape,marker", [
        ("21", "o"), ("22", "s"), ("23", "D"), ("24", "^"), ("25", "v"),
        ("o", "o"), (" s ", "s"), (21, "o"),
    ])
    def test_translation(self, shape, marker):
        assert marker_for(shape) == marker

    def test_unsupported_code(self):
        with pytest.raises(ValueError, match="Unsupported shape code"):
            marker_for("99")
