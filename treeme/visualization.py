"""
Annotated Tree Rendering

This module draws the annotated phylogenetic tree and writes it to PDF.

Figure Elements:
1. Tree
   - Rectangular layout, root on the left
   - Branch lengths on the x axis, one row per tip

2. Tip labels and tip points
   - Labels colored by one metadata column (color palette)
   - Points colored and shaped by another metadata column (shape palette)
   - Tips without metadata are drawn in the NA color

3. Branch labels
   - Amino-acid mutations inferred on each branch, at the branch midpoint

4. Clade brackets
   - Vertical bar spanning the clade's tips, with rotated clade name
   - Offsets cycle so that consecutive brackets do not collide

5. Title and legends
   - Title followed by the current date
   - One legend per styled metadata column

Design Specifications:
- Page size from the paper size table (mm), converted to inches
- Text sizes derived from the page height and number of tree rows
- Categories not present in a palette get seaborn colorblind colors

Example Usage:
    >>> from treeme.visualization import plot_annotated_tree
    >>> plot_annotated_tree(
    ...     tree=tree,
    ...     meta=meta_df,
    ...     clades=resolved_clades,
    ...     output_path="tree.pdf",
    ...     color_column="lineage",
    ...     point_column="country",
    ...     title="SARS-CoV-2 genomes",
    ... )
"""

from typing import Dict, List, Optional, Tuple, Union
from pathlib import Path
from datetime import date
import logging
import pandas as pd
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
from matplotlib.collections import LineCollection
from matplotlib.lines import Line2D
from matplotlib.patches import Patch
import seaborn as sns
from Bio.Phylo.BaseTree import Tree

from .config import TreeStyleConfig
from .layout import (
    calc_clade_offsets,
    calc_text_size,
    get_tree_width,
    get_xy_positions,
    mm_to_inches,
    mm_to_points,
)
from .phylogenetics import clades_by_number, count_internal_nodes
from .utils import create_output_directory

# Configure logging
logger = logging.getLogger(__name__)

DEFAULT_NA_COLOR = "#000000"


def tree_title(title: str, today: Optional[date] = None) -> str:
    """
    Title text followed by the date on a second line.

    Examples
    --------
    >>> tree_title("Weekly tree", date(2024, 3, 5))
    'Weekly tree\\n05 Mar 2024'
    """
    today = today or date.today()
    return f"{title}\n{today.strftime('%d %b %Y')}"


# ============================================================================
# Category Styling
# ============================================================================

def _ordered_categories(values: pd.Series, known: List[str]) -> List[str]:
    """Categories present in ``values``: palette order first, then the rest sorted."""
    present = set(values.dropna().unique())
    ordered = [c for c in known if c in present]
    ordered += sorted(present - set(known))
    return ordered


def _fallback_colors(n: int, exclude: List[str], palette: str) -> List[str]:
    if n <= 0:
        return []
    pal = sns.color_palette(palette, max(n + len(exclude), 10)).as_hex()
    remainder = [c for c in pal if c.lower() not in {e.lower() for e in exclude}]
    while len(remainder) < n:
        remainder += remainder
    return remainder[:n]


def category_colors(
    values: pd.Series,
    palette: Dict[str, str],
    fallback_palette: str = "colorblind",
) -> Dict[str, str]:
    """
    Color for every category present in ``values``.

    Categories missing from ``palette`` are assigned colors from the seaborn
    ``fallback_palette`` and reported at WARNING level.
    """
    categories = _ordered_categories(values, list(palette))
    missing = [c for c in categories if c not in palette]
    colors = {c: palette[c] for c in categories if c in palette}

    if missing:
        logger.warning(
            f"  ⚠ {len(missing)} categories have no palette color, using "
            f"'{fallback_palette}' colors: {', '.join(missing)}"
        )
        extra = _fallback_colors(len(missing), list(palette.values()), fallback_palette)
        colors.update(zip(missing, extra))
    return colors


def category_shapes(
    values: pd.Series,
    palette: Dict[str, Tuple[str, str]],
    fallback_palette: str = "colorblind",
    fallback_marker: str = "o",
) -> Dict[str, Tuple[str, str]]:
    """(marker, color) for every category present in ``values``."""
    categories = _ordered_categories(values, list(palette))
    missing = [c for c in categories if c not in palette]
    shapes = {c: palette[c] for c in categories if c in palette}

    if missing:
        logger.warning(
            f"  ⚠ {len(missing)} categories have no palette shape, using "
            f"'{fallback_marker}' markers: {', '.join(missing)}"
        )
        used = [color for _, color in palette.values()]
        extra = _fallback_colors(len(missing), used, fallback_palette)
        shapes.update({c: (fallback_marker, color) for c, color in zip(missing, extra)})
    return shapes


# ============================================================================
# Tree Plot
# ============================================================================

def plot_annotated_tree(
    tree: Tree,
    meta: pd.DataFrame,
    clades: pd.DataFrame,
    output_path: Union[str, Path],
    color_column: str,
    point_column: str,
    title: str,
    paper_size: Tuple[float, float] = (210, 297),
    color_palette: Optional[Dict[str, str]] = None,
    shape_palette: Optional[Dict[str, Tuple[str, str]]] = None,
    style: Optional[TreeStyleConfig] = None,
    na_color: str = DEFAULT_NA_COLOR,
    fallback_palette: str = "colorblind",
    fallback_marker: str = "o",
    today: Optional[date] = None,
) -> Path:
    """
    Render the annotated tree to a PDF file.

    Parameters
    ----------
    tree : Bio.Phylo.BaseTree.Tree
        Tree from ``phylogenetics.read_annotated_tree``
    meta : pd.DataFrame
        Metadata; first column holds taxon names
    clades : pd.DataFrame
        Resolved clades with ``clade_name`` and ``node_number`` columns
    output_path : Union[str, Path]
        Path for the PDF
    color_column : str
        Metadata column coloring the tip labels
    point_column : str
        Metadata column coloring and shaping the tip points
    title : str
        Plot title; the current date is appended
    paper_size : Tuple[float, float], optional
        Page (width, height) in mm (default: A4 portrait)
    color_palette : Dict[str, str], optional
        Category → color for tip labels
    shape_palette : Dict[str, Tuple[str, str]], optional
        Category → (marker, color) for tip points
    style : TreeStyleConfig, optional
        Geometry and typography settings
    na_color : str, optional
        Color for tips without a value (default: black)
    fallback_palette, fallback_marker : str, optional
        Styling for categories missing from the palettes
    today : date, optional
        Date shown under the title (default: today)

    Returns
    -------
    Path
        Path of the written PDF

    Raises
    ------
    ValueError
        If the tree has no internal nodes to size labels against
    RuntimeError
        If the figure cannot be drawn or saved; no partial file is left
    """
    style = style or TreeStyleConfig()
    color_palette = color_palette or {}
    shape_palette = shape_palette or {}

    out = Path(output_path)
    create_output_directory(out.parent)

    page_width, page_height = paper_size
    tip_size = calc_text_size(page_height, count_internal_nodes(tree))
    tip_pt = mm_to_points(tip_size)
    branch_pt = mm_to_points(max(tip_size - style.branch_label_shrink_mm, tip_size / 2))
    logger.info(f"Tip label size: {tip_size:.2f} mm ({tip_pt:.1f} pt)")

    positions = get_xy_positions(tree)
    plot_dim_x = get_tree_width(positions)
    if plot_dim_x <= 0:
        raise ValueError("Tree has zero width; cannot place labels")

    tips = tree.get_terminals()
    key = meta.columns[0]
    by_taxon = meta.drop_duplicates(subset=key).set_index(key, drop=False)
    label_values = by_taxon[color_column].reindex([t.name for t in tips])
    point_values = by_taxon[point_column].reindex([t.name for t in tips])

    label_colors = category_colors(label_values, color_palette, fallback_palette)
    point_styles = category_shapes(point_values, shape_palette, fallback_palette, fallback_marker)

    fig = plt.figure(figsize=(mm_to_inches(page_width), mm_to_inches(page_height)))
    try:
        ax = fig.add_subplot(1, 1, 1)

        _draw_branches(ax, tree, positions)
        _draw_tips(ax, tips, positions, label_values, point_values, label_colors,
                   point_styles, tip_pt, na_color, style)
        _draw_branch_labels(ax, tree, positions, branch_pt, style)
        _draw_clades(ax, clades, clades_by_number(tree), positions, plot_dim_x, style)
        _draw_legends(ax, color_column, point_column, label_colors, point_styles,
                      tip_size, style)

        ax.set_title(
            tree_title(title, today),
            loc="left",
            fontsize=style.title_size_pt,
            family=style.font_family,
        )
        ax.set_xlim(0, plot_dim_x * (1 + style.x_expand_fraction))
        ax.set_ylim(0, len(tips) + 1)
        ax.axis("off")

        fig.savefig(out, format="pdf")
    except Exception as e:
        if out.exists():
            out.unlink()
        raise RuntimeError(f"Failed to render tree to {out}: {e}") from e
    finally:
        plt.close(fig)

    logger.info(f"Saved annotated tree: {out}")
    return out


def _draw_branches(ax, tree, positions):
    segments = []
    for clade in tree.find_clades():
        if not clade.clades:
            continue
        x, _ = positions[clade]
        first_y = positions[clade.clades[0]][1]
        last_y = positions[clade.clades[-1]][1]
        segments.append([(x, first_y), (x, last_y)])
        for child in clade.clades:
            child_x, child_y = positions[child]
            segments.append([(x, child_y), (child_x, child_y)])
    ax.add_collection(LineCollection(segments, colors="black", linewidths=0.5))


def _draw_tips(ax, tips, positions, label_values, point_values, label_colors,
               point_styles, tip_pt, na_color, style):
    groups = {}
    for tip in tips:
        x, y = positions[tip]
        value = label_values.get(tip.name)
        color = label_colors.get(value, na_color) if pd.notna(value) else na_color
        ax.text(
            x + style.tip_label_offset, y, f" {tip.name}",
            fontsize=tip_pt, color=color, family=style.font_family,
            ha="left", va="center", clip_on=False,
        )
        category = point_values.get(tip.name)
        groups.setdefault(category if pd.notna(category) else None, []).append((x, y))

    for category, points in groups.items():
        marker, color = point_styles.get(category, ("o", na_color))
        xs, ys = zip(*points)
        ax.scatter(
            xs, ys, s=tip_pt ** 2, marker=marker, c=[color] * len(xs),
            edgecolors="black", linewidths=0.3, zorder=3, clip_on=False,
        )


def _draw_branch_labels(ax, tree, positions, branch_pt, style):
    # a third of the lowest row, as in the tip label spacing
    nudge = min(y for _, y in positions.values()) / 3
    for parent in tree.find_clades():
        parent_x = positions[parent][0]
        for child in parent.clades:
            muts = getattr(child, "annotations", {}).get("aa_muts")
            if not muts:
                continue
            x, y = positions[child]
            ax.text(
                (parent_x + x) / 2, y + nudge, ",".join(muts),
                fontsize=branch_pt, family=style.font_family,
                ha="center", va="center",
            )


def _draw_clades(ax, clades, numbered, positions, plot_dim_x, style):
    if clades is None or clades.empty:
        return
    offsets = calc_clade_offsets(
        len(clades),
        plot_dim_x,
        step_fraction=style.offset_step_fraction,
        start_fraction=style.offset_start_fraction,
        end_fraction=style.offset_end_fraction,
        cycle_length=style.offset_cycle,
    )
    clade_pt = mm_to_points(style.clade_font_size_mm)

    for node, name, offset in zip(clades["node_number"], clades["clade_name"], offsets):
        clade = numbered.get(int(node))
        if clade is None:
            logger.warning(f"  ⚠ Clade '{name}' refers to unknown node {node}; skipped")
            continue
        tip_xy = [positions[t] for t in clade.get_terminals()]
        low = min(y for _, y in tip_xy) - style.clade_extend
        high = max(y for _, y in tip_xy) + style.clade_extend
        bar_x = max(x for x, _ in tip_xy) + offset

        ax.plot([bar_x, bar_x], [low, high], color="black",
                linewidth=style.clade_bar_width, clip_on=False)
        ax.text(
            bar_x + plot_dim_x * style.clade_text_offset_fraction, (low + high) / 2, name,
            rotation=270, ha="left", va="center", fontsize=clade_pt,
            family=style.font_family, clip_on=False,
        )
        logger.debug(f"Clade '{name}' at node {node}, offset {offset:.4g}")


def _draw_legends(ax, color_column, point_column, label_colors, point_styles,
                  tip_size, style):
    anchor = style.legend_position
    key_size = max(mm_to_points(tip_size * 2) / style.legend_text_size_pt, 0.7)
    legend_kwargs = dict(
        frameon=False,
        fontsize=style.legend_text_size_pt,
        title_fontsize=style.legend_title_size_pt,
        borderaxespad=0,
        handlelength=key_size,
        handleheight=key_size,
        bbox_transform=ax.transAxes,
    )

    label_handles = [
        Patch(facecolor=color, edgecolor="black", linestyle=":", label=category)
        for category, color in label_colors.items()
    ]
    point_handles = [
        Line2D([], [], linestyle="", marker=marker, markerfacecolor=color,
               markeredgecolor="black", markersize=mm_to_points(tip_size * 1.5),
               label=category)
        for category, (marker, color) in point_styles.items()
    ]

    if label_handles:
        first = ax.legend(handles=label_handles, title=color_column, loc="lower left",
                          bbox_to_anchor=anchor, **legend_kwargs)
        ax.add_artist(first)
    if point_handles:
        ax.legend(handles=point_handles, title=point_column, loc="upper left",
                  bbox_to_anchor=anchor, **legend_kwargs)
