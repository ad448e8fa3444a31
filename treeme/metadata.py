"""
Metadata, Clade and Palette Table Parsing

This module reads the tab-separated inputs that drive the tree styling and
checks them against the tree.

Key Responsibilities:
1. Parse the metadata TSV:
   - First column: taxon name, must match tree tip labels exactly
   - Remaining columns: arbitrary attributes used for coloring/shaping
   - Empty cells are treated as missing values

2. Parse the clade TSV:
   - clade_name: text drawn next to the clade bracket (REQUIRED)
   - mutations: mutation identifier(s) defining the clade (REQUIRED)

3. Parse the color and shape palette TSVs into category lookups

4. Consistency checks:
   - Requested metadata columns exist
   - Every tree tip has a metadata row (warning only)

Example Usage:
    >>> from treeme.metadata import parse_metadata_tsv, check_taxa_names
    >>> meta = parse_metadata_tsv("meta.tsv")
    >>> validate_metadata_columns(meta, ["lineage", "country"])
    >>> check_taxa_names(tip_labels, meta.iloc[:, 0])
"""

from typing import Dict, Iterable, List, Optional, Tuple, Union
from pathlib import Path
import logging
import pandas as pd

# Configure logging
logger = logging.getLogger(__name__)

CLADE_COLUMNS = ["clade_name", "mutations"]
COLOR_COLUMNS = ["categories", "color_pal"]
SHAPE_COLUMNS = ["shape_cats", "shapes_type", "shape_colors"]

# R plotting symbols (pch) to matplotlib markers
R_PCH_MARKERS = {
    0: "s", 1: "o", 2: "^", 3: "+", 4: "x", 5: "D", 6: "v", 7: "X",
    8: "*", 15: "s", 16: "o", 17: "^", 18: "D", 19: "o", 20: ".",
    21: "o", 22: "s", 23: "D", 24: "^", 25: "v",
}


# ============================================================================
# TSV Parsing
# ============================================================================

def _read_tsv(path: Path, encoding: str = 'utf-8') -> pd.DataFrame:
    try:
        df = pd.read_csv(
            path,
            sep='\t',
            encoding=encoding,
            dtype=str,
            keep_default_na=False,
            na_values=[''],
        )
    except UnicodeDecodeError:
        logger.warning(f"UTF-8 encoding failed for {path}, trying latin-1")
        df = pd.read_csv(
            path,
            sep='\t',
            encoding='latin-1',
            dtype=str,
            keep_default_na=False,
            na_values=[''],
        )

    df.columns = [str(c).strip() for c in df.columns]
    for col in df.columns:
        df[col] = df[col].str.strip()
    return df


def parse_metadata_tsv(
    tsv_path: Union[str, Path],
    encoding: str = 'utf-8',
) -> pd.DataFrame:
    """
    Parse the metadata TSV.

    Parameters
    ----------
    tsv_path : Union[str, Path]
        Path to metadata TSV file
    encoding : str
        File encoding (default: 'utf-8', falls back to 'latin-1' if needed)

    Returns
    -------
    pd.DataFrame
        Metadata with all values as strings; the first column holds the
        taxon names

    Raises
    ------
    FileNotFoundError
        If TSV file doesn't exist
    pd.errors.EmptyDataError
        If the file has no rows

    Notes
    -----
    Duplicate taxon names are kept only at their first occurrence, with a
    warning, so that the join against tree tips stays one-to-one.
    """
    path = Path(tsv_path)

    if not path.is_file():
        raise FileNotFoundError(f"Metadata file not found: {path}")

    logger.info(f"Reading metadata file: {path}")
    df = _read_tsv(path, encoding)

    if df.empty:
        raise pd.errors.EmptyDataError(f"Metadata file is empty: {path}")

    key = df.columns[0]
    duplicates = df[key].duplicated()
    if duplicates.any():
        examples = df.loc[duplicates, key].head(5).tolist()
        logger.warning(
            f"Found {duplicates.sum()} duplicate taxon names in '{key}'. "
            f"Examples: {examples}. Keeping only first occurrence of each."
        )
        df = df[~duplicates].copy()

    logger.info(f"Read {len(df)} rows and {len(df.columns)} columns")
    return df.reset_index(drop=True)


def parse_clades_tsv(
    tsv_path: Union[str, Path],
    required_columns: Optional[List[str]] = None,
) -> pd.DataFrame:
    """
    Parse the clade TSV.

    Parameters
    ----------
    tsv_path : Union[str, Path]
        Path to clade TSV file
    required_columns : List[str], optional
        Required column names. If None, uses ``['clade_name', 'mutations']``

    Returns
    -------
    pd.DataFrame
        Clade rows with missing names or mutations removed

    Raises
    ------
    FileNotFoundError
        If TSV file doesn't exist
    ValueError
        If required columns are missing
    """
    path = Path(tsv_path)

    if not path.is_file():
        raise FileNotFoundError(f"Clade file not found: {path}")

    if required_columns is None:
        required_columns = CLADE_COLUMNS

    logger.info(f"Reading clade file: {path}")
    df = _read_tsv(path)
    validate_required_columns(df, required_columns, source="Clade file")

    incomplete = df[required_columns].isna().any(axis=1)
    if incomplete.any():
        logger.warning(f"Skipping {incomplete.sum()} clade rows with empty fields")
        df = df[~incomplete]

    logger.info(f"Read {len(df)} clade definitions")
    return df.reset_index(drop=True)


def validate_required_columns(
    df: pd.DataFrame,
    required_columns: Iterable[str],
    source: str = "Table",
) -> bool:
    """
    Validate that DataFrame contains required columns.

    Raises
    ------
    ValueError
        If any required columns are missing
    """
    missing_columns = [col for col in required_columns if col not in df.columns]

    if missing_columns:
        raise ValueError(
            f"{source} is missing required columns: {missing_columns}. "
            f"Available columns: {list(df.columns)}"
        )

    logger.debug(f"All required columns present: {list(required_columns)}")
    return True


def validate_metadata_columns(meta: pd.DataFrame, columns: Iterable[str]) -> bool:
    """
    Check that the columns requested for styling exist in the metadata.

    Raises
    ------
    ValueError
        Naming the first requested column that is absent
    """
    for column in columns:
        if column not in meta.columns:
            raise ValueError(
                f"CHECK YOUR META FILE. Check if this header is in the meta file: {column}"
            )
    return True


# ============================================================================
# Consistency Checks
# ============================================================================

def check_taxa_names(tree_labels: Iterable[str], meta_taxa: Iterable[str]) -> List[str]:
    """
    Report tree tips that have no metadata row.

    Never raises: tips without metadata are drawn with default styling.

    Parameters
    ----------
    tree_labels : Iterable[str]
        Tip labels of the tree
    meta_taxa : Iterable[str]
        Values of the metadata key column

    Returns
    -------
    List[str]
        Tip labels missing from the metadata, in tree order
    """
    known = set(meta_taxa)
    mismatch = [label for label in tree_labels if label not in known]

    if not mismatch:
        logger.info("Good: All tree tip labels present in meta file")
    else:
        listing = "\n".join(f"\t{label}" for label in mismatch)
        logger.warning(
            f"Warning - the following tip labels not present in meta file:\n{listing}"
        )
    return mismatch


# ============================================================================
# Palettes
# ============================================================================

def load_color_palette(tsv_path: Union[str, Path]) -> Dict[str, str]:
    """
    Load the category → color table used for tip labels.

    Returns
    -------
    Dict[str, str]
        Colors keyed by category, in file order
    """
    path = Path(tsv_path)
    if not path.is_file():
        raise FileNotFoundError(f"Color palette file not found: {path}")

    df = _read_tsv(path)
    validate_required_columns(df, COLOR_COLUMNS, source="Color palette")
    df = df.dropna(subset=COLOR_COLUMNS)
    palette = dict(zip(df["categories"], df["color_pal"]))
    logger.debug(f"Loaded {len(palette)} label colors from {path}")
    return palette


def marker_for(shape: str) -> str:
    """
    Translate a palette shape to a matplotlib marker.

    Integer codes are read as R ``pch`` symbols; anything else is passed
    through as a matplotlib marker.
    """
    shape = str(shape).strip()
    if shape.isdigit():
        code = int(shape)
        if code not in R_PCH_MARKERS:
            raise ValueError(f"Unsupported shape code: {code}")
        return R_PCH_MARKERS[code]
    return shape


def load_shape_palette(tsv_path: Union[str, Path]) -> Dict[str, Tuple[str, str]]:
    """
    Load the category → (marker, fill color) table used for tip points.

    Returns
    -------
    Dict[str, Tuple[str, str]]
        (matplotlib marker, color) keyed by category, in file order
    """
    path = Path(tsv_path)
    if not path.is_file():
        raise FileNotFoundError(f"Shape palette file not found: {path}")

    df = _read_tsv(path)
    validate_required_columns(df, SHAPE_COLUMNS, source="Shape palette")
    df = df.dropna(subset=SHAPE_COLUMNS)
    palette = {
        cat: (marker_for(shape), color)
        for cat, shape, color in zip(df["shape_cats"], df["shapes_type"], df["shape_colors"])
    }
    logger.debug(f"Loaded {len(palette)} tip point styles from {path}")
    return palette
