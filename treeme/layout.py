"""
Page and Tree Geometry

Closed-form geometry used to place elements on the rendered tree:

1. Paper sizes
   - Fixed table of page-size codes (A2-A4, portrait/landscape) in mm

2. Text sizing
   - Tip label size derived from page height and number of tree rows
   - Unit conversion from millimeters to points

3. Clade label offsets
   - Small cyclic set of horizontal offsets so consecutive clade brackets
     do not collide

4. Tree coordinates
   - Rectangular x/y positions per clade (x = depth from root, y = row)

Example Usage:
    >>> from treeme.layout import get_paper_size, calc_text_size, calc_clade_offsets
    >>> width, height = get_paper_size("A4p")
    >>> calc_text_size(height, 99)
    3.0
    >>> calc_clade_offsets(5, 100.0)
    [20.0, 22.0, 24.0, 20.0, 22.0]
"""

from typing import Dict, List, Tuple
import logging
import numpy as np
from Bio.Phylo.BaseTree import Clade, Tree

logger = logging.getLogger(__name__)

MM_PER_INCH = 25.4
POINTS_PER_INCH = 72.0

# (width, height) in millimeters
PAPER_SIZES: Dict[str, Tuple[float, float]] = {
    "A2p": (297 * 2, 420 * 2),
    "A2l": (420 * 2, 297 * 2),
    "A3p": (297, 420),
    "A3l": (420, 297),
    "A4p": (210, 297),
    "A4l": (297, 210),
}


# ============================================================================
# Paper and Text Size
# ============================================================================

def get_paper_size(size_code: str) -> Tuple[float, float]:
    """
    Look up the (width, height) of a page-size code in millimeters.

    Parameters
    ----------
    size_code : str
        One of the keys of ``PAPER_SIZES``. The trailing letter gives the
        orientation: ``p`` portrait, ``l`` landscape.

    Returns
    -------
    Tuple[float, float]
        Page width and height in mm

    Raises
    ------
    ValueError
        If the code is not a known paper size
    """
    if size_code not in PAPER_SIZES:
        options = " ".join(PAPER_SIZES)
        raise ValueError(f"Paper size unknown: {size_code!r}. Options: {options}")
    return PAPER_SIZES[size_code]


def calc_text_size(height: float, lines: int) -> float:
    """
    Maximum line height (mm) when ``lines`` rows share ``height`` mm.

    Used as the base tip label size; other text and glyph sizes are scaled
    from it.

    Raises
    ------
    ValueError
        If ``lines`` is not positive
    """
    if lines <= 0:
        raise ValueError(f"Cannot size tip labels for {lines} tree rows")
    return height / lines


def mm_to_points(size_mm: float) -> float:
    """Convert a size in millimeters to typographic points."""
    return size_mm / MM_PER_INCH * POINTS_PER_INCH


def mm_to_inches(size_mm: float) -> float:
    return size_mm / MM_PER_INCH


# ============================================================================
# Clade Label Offsets
# ============================================================================

def calc_clade_offsets(
    num_clades: int,
    plot_dim_x: float,
    step_fraction: float = 0.02,
    start_fraction: float = 0.20,
    end_fraction: float = 1.30,
    cycle_length: int = 3,
) -> List[float]:
    """
    Allocate one horizontal offset per clade label.

    Offsets are generated from ``start_fraction`` to ``end_fraction`` of the
    tree width in steps of ``step_fraction`` of the width. Only the first
    ``cycle_length`` values are used, repeated in order until every clade has
    one, so neighbouring brackets sit at staggered distances from the tips.

    Parameters
    ----------
    num_clades : int
        Number of resolved clades, in plotting order
    plot_dim_x : float
        Horizontal extent of the plotted tree
    step_fraction, start_fraction, end_fraction : float, optional
        Step and range bounds as fractions of ``plot_dim_x``
    cycle_length : int, optional
        Number of distinct offsets to cycle through (default: 3)

    Returns
    -------
    List[float]
        Exactly ``num_clades`` offsets

    Raises
    ------
    ValueError
        If ``plot_dim_x`` is not positive or ``num_clades`` is negative

    Notes
    -----
    If the range yields fewer than ``cycle_length`` values, the values that
    were generated are cycled instead.

    Examples
    --------
    >>> calc_clade_offsets(5, 100.0)
    [20.0, 22.0, 24.0, 20.0, 22.0]
    """
    if num_clades < 0:
        raise ValueError("num_clades must be non-negative")
    if num_clades == 0:
        return []
    if plot_dim_x <= 0:
        raise ValueError(f"Tree width must be positive to place clade labels, got {plot_dim_x}")

    step = plot_dim_x * step_fraction
    start = plot_dim_x - plot_dim_x * (1 - start_fraction)
    stop = plot_dim_x + plot_dim_x * (end_fraction - 1)

    # half a step of slack keeps the end point despite float error
    values = np.arange(start, stop + step / 2, step)[:cycle_length]
    if len(values) < cycle_length:
        logger.debug(f"Only {len(values)} clade offsets available; cycling those")

    repeats = -(-num_clades // len(values))
    return [float(v) for v in np.tile(values, repeats)[:num_clades]]


# ============================================================================
# Tree Coordinates
# ============================================================================

def get_xy_positions(tree: Tree) -> Dict[Clade, Tuple[float, float]]:
    """
    Rectangular coordinates for every clade.

    x is the summed branch length from the root (unit branch lengths when
    the tree has none). Tips occupy rows 1..N in file order, from the bottom
    of the plot up; an internal node sits halfway between its first and last
    child.

    Returns
    -------
    Dict[Clade, Tuple[float, float]]
        Mapping of clade to (x, y)
    """
    depths = tree.depths()
    if not max(depths.values()):
        depths = tree.depths(unit_branch_lengths=True)

    heights = {tip: float(i) for i, tip in enumerate(tree.get_terminals(), start=1)}

    def calc_row(clade):
        for subclade in clade:
            if subclade not in heights:
                calc_row(subclade)
        heights[clade] = (heights[clade.clades[0]] + heights[clade.clades[-1]]) / 2.0

    if tree.root.clades:
        calc_row(tree.root)

    return {clade: (float(depths[clade]), heights[clade]) for clade in heights}


def get_tree_width(positions: Dict[Clade, Tuple[float, float]]) -> float:
    """Largest x coordinate of the tree, i.e. its horizontal extent."""
    return max(x for x, _ in positions.values())
