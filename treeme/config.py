"""
Configuration Management for treeme

This module provides the configuration system using frozen dataclasses. The
configuration system supports:

1. Default parameter values reproducing the standard tree layout
2. Loading configuration from YAML/JSON files
3. Environment variable overrides
4. Validation in ``__post_init__``

Configuration Structure:
- TreeStyleConfig: Label, bracket and legend geometry
- PaletteConfig: Color and shape lookup tables
- PipelineConfig: Master configuration combining all components

Precedence when run from the command line:
defaults < config file < environment (TREEME_*) < command-line flags

Example Usage:
    >>> from treeme.config import get_default_config, load_config_from_file
    >>>
    >>> config = get_default_config()
    >>> print(config.style.offset_step_fraction)
    0.02
    >>>
    >>> config = load_config_from_file("my_tree.yaml")
    >>> custom_config = config.update(
    ...     paper_size="A3l",
    ...     palettes__colors_file="lab_colors.tsv",
    ... )
"""

from dataclasses import dataclass, field, fields, asdict, replace
from pathlib import Path
from typing import Optional, List, Dict, Any, Union, Tuple
import os
import json
import logging

logger = logging.getLogger(__name__)

# Try to import YAML support
try:
    import yaml
    YAML_AVAILABLE = True
except ImportError:
    YAML_AVAILABLE = False
    logger.debug("PyYAML not available; YAML config files not supported")

DATA_DIR = Path(__file__).parent / "data"


# ============================================================================
# Tree Style Configuration
# ============================================================================

@dataclass(frozen=True)
class TreeStyleConfig:
    """
    Geometry and typography of the rendered tree.

    Fractions are relative to the tree width (largest root-to-tip distance);
    sizes ending in ``_mm`` are millimeters, ``_pt`` points.

    Attributes
    ----------
    offset_step_fraction : float
        Spacing between candidate clade bracket offsets (default: 0.02)

    offset_start_fraction : float
        First candidate clade bracket offset (default: 0.20)

    offset_end_fraction : float
        Last candidate clade bracket offset (default: 1.30)

    offset_cycle : int
        Number of distinct offsets cycled through by consecutive clades
        (default: 3)

    clade_text_offset_fraction : float
        Gap between a clade bracket and its text (default: 0.01)

    clade_bar_width : float
        Line width of clade brackets in points (default: 1.0)

    clade_font_size_mm : float
        Clade label text size (default: 5)

    clade_extend : float
        Rows added above and below the clade's tips for the bracket
        (default: 0.2)

    x_expand_fraction : float
        Extra room on the right of the tree for labels (default: 0.40)

    tip_label_offset : float
        Gap between a tip and its label, in tree units (default: 0.00009)

    branch_label_shrink_mm : float
        Branch mutation labels are this much smaller than tip labels
        (default: 0.5)

    font_family : str
        Font family for all text (default: "sans-serif")

    title_size_pt, legend_text_size_pt, legend_title_size_pt : float
        Text sizes of the title and legends (defaults: 20, 12, 15)

    legend_position : Tuple[float, float]
        Legend anchor in axes coordinates (default: (0.1, 0.65))
    """
    offset_step_fraction: float = 0.02
    offset_start_fraction: float = 0.20
    offset_end_fraction: float = 1.30
    offset_cycle: int = 3
    clade_text_offset_fraction: float = 0.01
    clade_bar_width: float = 1.0
    clade_font_size_mm: float = 5.0
    clade_extend: float = 0.2
    x_expand_fraction: float = 0.40
    tip_label_offset: float = 0.00009
    branch_label_shrink_mm: float = 0.5
    font_family: str = "sans-serif"
    title_size_pt: float = 20.0
    legend_text_size_pt: float = 12.0
    legend_title_size_pt: float = 15.0
    legend_position: Tuple[float, float] = (0.1, 0.65)

    def __post_init__(self):
        """Validate configuration parameters."""
        if isinstance(self.legend_position, list):
            object.__setattr__(self, 'legend_position', tuple(self.legend_position))
        if self.offset_step_fraction <= 0:
            raise ValueError("offset_step_fraction must be positive")
        if self.offset_end_fraction < self.offset_start_fraction:
            raise ValueError("offset_end_fraction must not be below offset_start_fraction")
        if self.offset_cycle < 1:
            raise ValueError("offset_cycle must be at least 1")
        if self.x_expand_fraction < 0:
            raise ValueError("x_expand_fraction must be non-negative")
        if self.clade_font_size_mm <= 0:
            raise ValueError("clade_font_size_mm must be positive")
        if len(self.legend_position) != 2:
            raise ValueError("legend_position must be an (x, y) pair")


# ============================================================================
# Palette Configuration
# ============================================================================

@dataclass(frozen=True)
class PaletteConfig:
    """
    Lookup tables for tip label colors and tip point shapes.

    Attributes
    ----------
    colors_file : Path
        TSV with ``categories`` and ``color_pal`` columns
        (default: packaged ``data/colors.tsv``)

    shapes_file : Path
        TSV with ``shape_cats``, ``shapes_type`` and ``shape_colors``
        columns (default: packaged ``data/shapes.tsv``)

    na_color : str
        Color for tips without metadata (default: "#000000")

    fallback_palette : str
        Seaborn palette used for categories missing from the tables
        (default: "colorblind")

    fallback_marker : str
        Marker for categories missing from the shape table (default: "o")
    """
    colors_file: Optional[Path] = None
    shapes_file: Optional[Path] = None
    na_color: str = "#000000"
    fallback_palette: str = "colorblind"
    fallback_marker: str = "o"

    def __post_init__(self):
        """Normalize paths and set packaged defaults."""
        for name, default in (("colors_file", "colors.tsv"), ("shapes_file", "shapes.tsv")):
            value = getattr(self, name)
            if value is None:
                object.__setattr__(self, name, DATA_DIR / default)
            elif isinstance(value, str):
                object.__setattr__(self, name, Path(value))


# ============================================================================
# Master Pipeline Configuration
# ============================================================================

@dataclass(frozen=True)
class PipelineConfig:
    """
    Master configuration for a treeme run.

    Attributes
    ----------
    style : TreeStyleConfig
        Tree geometry and typography

    palettes : PaletteConfig
        Color and shape lookup tables

    paper_size : str
        Output page size code (default: "A4p")

    log_level : str
        Logging level (default: "INFO")

    overwrite_existing : bool
        Overwrite an existing output file (default: True)
    """
    style: TreeStyleConfig = field(default_factory=TreeStyleConfig)
    palettes: PaletteConfig = field(default_factory=PaletteConfig)
    paper_size: str = "A4p"
    log_level: str = "INFO"
    overwrite_existing: bool = True

    def __post_init__(self):
        """Validate configuration."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")

    def update(self, **kwargs) -> 'PipelineConfig':
        """
        Return a copy with some settings replaced.

        Keys naming a field of ``style`` or ``palettes`` are written as
        ``<section>__<field>``, e.g. ``update(style__offset_cycle=2)``.
        Every touched section is rebuilt, so its validation runs again.

        Raises
        ------
        TypeError
            If a key names no configuration field
        ValueError
            If a new value fails validation
        """
        sections = {}
        for key, value in kwargs.items():
            section, sep, name = key.partition('__')
            if sep:
                sections.setdefault(section, {})[name] = value

        changes = {k: v for k, v in kwargs.items() if '__' not in k}
        for section, values in sections.items():
            if section not in SECTIONS:
                raise TypeError(f"Unknown configuration section: {section}")
            changes[section] = replace(getattr(self, section), **values)

        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        """Nested dictionary of all settings, sections included."""
        return asdict(self)

    def to_yaml(self, output_path: Union[str, Path]) -> None:
        """
        Write the settings as YAML, in field order.

        Raises
        ------
        ImportError
            If PyYAML is not installed
        """
        if not YAML_AVAILABLE:
            raise ImportError("PyYAML is required to save YAML config files")
        with open(self._prepare_output(output_path), 'w') as fh:
            yaml.safe_dump(self._plain_dict(), fh, default_flow_style=False, sort_keys=False)
        logger.info(f"Configuration saved to {output_path}")

    def to_json(self, output_path: Union[str, Path]) -> None:
        """Write the settings as indented JSON."""
        with open(self._prepare_output(output_path), 'w') as fh:
            json.dump(self._plain_dict(), fh, indent=2)
        logger.info(f"Configuration saved to {output_path}")

    def save(self, output_path: Union[str, Path]) -> None:
        """Write YAML or JSON depending on the file suffix."""
        suffix = Path(output_path).suffix.lower()
        if suffix in YAML_SUFFIXES:
            self.to_yaml(output_path)
        elif suffix == '.json':
            self.to_json(output_path)
        else:
            raise ValueError(f"Unsupported config file format: {suffix}")

    def _plain_dict(self) -> Dict[str, Any]:
        # palette paths as text, legend position as a list
        return _convert_paths_to_strings(self.to_dict())

    @staticmethod
    def _prepare_output(output_path: Union[str, Path]) -> Path:
        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        return path


# Nested sections of PipelineConfig and their dataclasses
SECTIONS = {
    'style': TreeStyleConfig,
    'palettes': PaletteConfig,
}

YAML_SUFFIXES = ('.yaml', '.yml')


# ============================================================================
# Helper Functions
# ============================================================================

def get_default_config() -> PipelineConfig:
    """Get default pipeline configuration."""
    return PipelineConfig()


def load_config_from_file(config_path: Union[str, Path]) -> PipelineConfig:
    """
    Load configuration from YAML or JSON file.

    Automatically detects file format based on extension.

    Raises
    ------
    FileNotFoundError
        If configuration file doesn't exist
    ValueError
        If file format is not supported
    """
    path = Path(config_path)

    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    suffix = path.suffix.lower()
    if suffix in YAML_SUFFIXES:
        if not YAML_AVAILABLE:
            raise ImportError("PyYAML is required to load YAML config files")
        with open(path, 'r') as fh:
            config_dict = yaml.safe_load(fh) or {}
    elif suffix == '.json':
        with open(path, 'r') as fh:
            config_dict = json.load(fh)
    else:
        raise ValueError(f"Unsupported config file format: {suffix}")

    logger.info(f"Loaded configuration from {path}")
    return _dict_to_config(config_dict)


def _dict_to_config(config_dict: Dict[str, Any]) -> PipelineConfig:
    """Build a PipelineConfig; section tables become their dataclasses."""
    values = dict(config_dict)
    for section, section_cls in SECTIONS.items():
        if section in values:
            values[section] = section_cls(**values[section])
    return PipelineConfig(**values)


def _convert_paths_to_strings(obj: Any) -> Any:
    """Paths to text and tuples to lists, recursively, for YAML/JSON output."""
    if isinstance(obj, dict):
        return {key: _convert_paths_to_strings(value) for key, value in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_convert_paths_to_strings(item) for item in obj]
    return str(obj) if isinstance(obj, Path) else obj


def _is_config_key(key: str) -> bool:
    """True if ``key`` is a PipelineConfig field or ``<section>__<field>``."""
    section, sep, name = key.partition('__')
    if not sep:
        return key in {f.name for f in fields(PipelineConfig)} and key not in SECTIONS
    return section in SECTIONS and name in {f.name for f in fields(SECTIONS[section])}


def load_config_from_env(prefix: str = "TREEME_") -> Dict[str, Any]:
    """
    Collect configuration overrides from ``TREEME_*`` environment variables.

    The part after the prefix is lower-cased and nested fields use a double
    underscore, so ``TREEME_PALETTES__COLORS_FILE=/data/colors.tsv`` sets
    ``palettes.colors_file``. Variables that share the prefix but name no
    setting (``TREEME_HOME``, say) are skipped.

    Returns
    -------
    Dict[str, Any]
        Keyword arguments for ``PipelineConfig.update``
    """
    overrides = {}
    for var, raw in os.environ.items():
        if not var.startswith(prefix):
            continue
        key = var[len(prefix):].lower()
        if not _is_config_key(key):
            logger.debug(f"Ignoring {var}: not a configuration setting")
            continue
        overrides[key] = _parse_env_value(raw)

    if overrides:
        logger.debug(f"Configuration overrides from environment: {sorted(overrides)}")
    return overrides


def _parse_env_value(value: str) -> Any:
    """Environment text to bool, int, float or str, first match wins."""
    lowered = value.strip().lower()
    if lowered in ('true', 'yes'):
        return True
    if lowered in ('false', 'no'):
        return False
    for convert in (int, float):
        try:
            return convert(value)
        except ValueError:
            continue
    return value


def validate_config(config: PipelineConfig) -> List[str]:
    """
    Validate configuration and return list of warnings.

    Examples
    --------
    >>> for warning in validate_config(get_default_config()):
    ...     print(f"Warning: {warning}")
    """
    warnings = []

    for label, path in (
        ("Color palette", config.palettes.colors_file),
        ("Shape palette", config.palettes.shapes_file),
    ):
        if not path.exists():
            warnings.append(f"{label} file not found: {path}")

    style = config.style
    furthest = style.offset_start_fraction + style.offset_step_fraction * (style.offset_cycle - 1)
    if furthest > style.x_expand_fraction:
        warnings.append(
            f"Clade brackets reach {1 + furthest:.2f} of the tree width, beyond the "
            f"plotted area ({1 + style.x_expand_fraction:.2f}); labels may be clipped."
        )

    if style.offset_step_fraction < 0.005:
        warnings.append(
            f"Clade offset step ({style.offset_step_fraction}) is very small; "
            "neighbouring clade brackets may overlap."
        )

    return warnings
