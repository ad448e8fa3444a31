"""
Annotated Tree Reading and Clade Node Resolution

This module loads phylogenetic trees that carry per-node annotations and
locates the nodes that define named clades.

Supported tree formats:
- Extended Newick / NHX: ``(A,B)[&&NHX:aa_muts=S:D614G,S:A222V]:0.01``
- NEXUS with BEAST-style comments: ``[&aa_muts="S:D614G,S:A222V",clade=1]``

Node numbering:
Tips are numbered 1..N in the order they appear in the file. Internal nodes
continue from N+1 in pre-order, so the root is always N+1. These numbers are
the node ids reported in the node table and used for clade labels.

Clade resolution:
A clade is described by one or more mutation identifiers. It resolves to
the first node (lowest node number) whose ``aa_muts`` annotation contains
any of them. Clades whose mutations are not found anywhere in the tree are
dropped from the plot with a warning.

Example Usage:
    >>> from treeme.phylogenetics import read_annotated_tree, tree_node_table
    >>> tree = read_annotated_tree("tree.nhx")
    >>> nodes = tree_node_table(tree)
    >>> clades = resolve_clade_nodes(clades_df, nodes)
"""

from typing import Any, Dict, Iterable, List, Optional, Union
from pathlib import Path
import logging
import re
import pandas as pd
from Bio import Phylo
from Bio.Phylo.BaseTree import Clade, Tree

# Configure logging
logger = logging.getLogger(__name__)

# Annotation keys whose values are comma separated lists
LIST_ANNOTATIONS = ("aa_muts", "nuc_muts")

_NHX_FIELD = re.compile(r"([^:=\s]+)=(.*?)(?=:[^:=\s]+=|$)", re.DOTALL)


# ============================================================================
# Comment Parsing
# ============================================================================

def _split_outside_brackets(text: str, sep: str = ",") -> List[str]:
    """Split on ``sep`` except inside quotes or braces."""
    parts = []
    depth = 0
    quote = None
    current = []
    for char in text:
        if quote:
            if char == quote:
                quote = None
        elif char in "\"'":
            quote = char
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
        elif char == sep and depth == 0:
            parts.append("".join(current))
            current = []
            continue
        current.append(char)
    parts.append("".join(current))
    return parts


def _clean_value(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        value = value[1:-1]
    if value.startswith("{") and value.endswith("}"):
        value = value[1:-1]
    return value.strip()


def parse_node_comment(comment: Optional[str]) -> Dict[str, Any]:
    """
    Parse a node comment into an annotation dictionary.

    Parameters
    ----------
    comment : str or None
        Comment text, e.g. ``&&NHX:aa_muts=S:D614G`` or
        ``[&aa_muts="S:D614G,S:A222V"]``. One pair of surrounding square
        brackets is removed; the NEXUS reader keeps them, the Newick reader
        does not.

    Returns
    -------
    Dict[str, Any]
        Annotation values as strings; keys in ``LIST_ANNOTATIONS`` become
        lists of identifiers. Comments that are not annotations (plain
        support values, free text) give an empty dict.

    Examples
    --------
    >>> parse_node_comment("&&NHX:aa_muts=S:D614G,S:A222V:clade=20A")
    {'aa_muts': ['S:D614G', 'S:A222V'], 'clade': '20A'}
    """
    if not comment:
        return {}

    text = comment.strip()
    if text.startswith("[") and text.endswith("]"):
        text = text[1:-1].strip()

    if text.startswith("&&NHX"):
        body = text[len("&&NHX"):].lstrip(":")
        pairs = [(m.group(1), m.group(2)) for m in _NHX_FIELD.finditer(body)]
    elif text.startswith("&"):
        pairs = []
        for field in _split_outside_brackets(text[1:]):
            if "=" not in field:
                continue
            key, value = field.split("=", 1)
            pairs.append((key, value))
    else:
        return {}

    annotations = {}
    for key, value in pairs:
        key = key.strip()
        value = _clean_value(value)
        if key in LIST_ANNOTATIONS:
            annotations[key] = [v.strip() for v in value.split(",") if v.strip()]
        else:
            annotations[key] = value
    return annotations


def _comment_text(clade: Clade) -> Optional[str]:
    comment = getattr(clade, "comment", None)
    if isinstance(comment, (list, tuple)):
        return " ".join(c for c in comment if c)
    return comment


# ============================================================================
# Tree Reading
# ============================================================================

def _detect_format(path: Path) -> str:
    with open(path, "r", encoding="utf-8") as fh:
        for line in fh:
            if line.strip():
                return "nexus" if line.strip().upper().startswith("#NEXUS") else "newick"
    return "newick"


def read_annotated_tree(tree_file: Union[str, Path]) -> Tree:
    """
    Read an annotated tree and attach parsed annotations to each clade.

    Each clade gains an ``annotations`` dict (see ``parse_node_comment``).
    The format is NEXUS when the file starts with ``#NEXUS``, Newick/NHX
    otherwise.

    Parameters
    ----------
    tree_file : Union[str, Path]
        Path to the tree file

    Returns
    -------
    Bio.Phylo.BaseTree.Tree
        Parsed tree

    Raises
    ------
    FileNotFoundError
        If the tree file doesn't exist
    ValueError
        If the file cannot be parsed, holds no tips, or repeats a tip name
    """
    path = Path(tree_file)
    if not path.is_file():
        raise FileNotFoundError(f"Tree file not found: {path}")

    fmt = _detect_format(path)
    logger.info(f"Reading {fmt} tree: {path}")

    try:
        tree = Phylo.read(str(path), fmt)
    except Exception as e:
        raise ValueError(f"Failed to parse tree file {path}: {e}") from e

    tips = tree.get_terminals()
    if not tips or all(tip.name is None for tip in tips):
        raise ValueError(f"Tree file {path} contains no named tips")

    names = [tip.name for tip in tips]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ValueError(f"Tree tip names must be unique; repeated: {duplicates}")

    n_annotated = 0
    for clade in tree.find_clades():
        clade.annotations = parse_node_comment(_comment_text(clade))
        if clade.annotations:
            n_annotated += 1

    logger.info(f"  ✓ Read tree with {len(tips)} tips, {n_annotated} annotated nodes")
    return tree


def count_internal_nodes(tree: Tree) -> int:
    """Number of internal (non-tip) nodes in the tree."""
    return len(tree.get_nonterminals())


# ============================================================================
# Node Table
# ============================================================================

def number_nodes(tree: Tree) -> Dict[Clade, int]:
    """
    Assign node numbers: tips 1..N in file order, internal nodes N+1.. in
    pre-order (root = N+1).
    """
    numbers = {}
    tips = tree.get_terminals()
    for i, tip in enumerate(tips, start=1):
        numbers[tip] = i
    next_id = len(tips) + 1
    for clade in tree.find_clades(order="preorder"):
        if not clade.is_terminal():
            numbers[clade] = next_id
            next_id += 1
    return numbers


def tree_node_table(tree: Tree) -> pd.DataFrame:
    """
    Tabulate nodes with their numbers and annotations.

    Returns
    -------
    pd.DataFrame
        One row per node, sorted by node number, with columns ``node``,
        ``parent``, ``label``, ``is_tip``, ``branch_length``, ``aa_muts`` and
        one column for every other annotation key present in the tree.
    """
    numbers = number_nodes(tree)
    parents = {}
    for clade in tree.find_clades():
        for child in clade.clades:
            parents[child] = clade

    rows = []
    for clade, node in numbers.items():
        annotations = dict(getattr(clade, "annotations", {}) or {})
        row = {
            "node": node,
            "parent": numbers[parents[clade]] if clade in parents else node,
            "label": clade.name,
            "is_tip": clade.is_terminal(),
            "branch_length": clade.branch_length,
            "aa_muts": annotations.pop("aa_muts", []),
        }
        for key, value in annotations.items():
            row.setdefault(key, value)
        rows.append(row)

    return pd.DataFrame(rows).sort_values("node").reset_index(drop=True)


# ============================================================================
# Clade Node Resolution
# ============================================================================

def split_mutations(value: Any) -> List[str]:
    """Split a mutations cell on commas, semicolons or whitespace."""
    if not isinstance(value, str):
        return []
    return [m for m in re.split(r"[,;\s]+", value.strip()) if m]


def build_mutation_index(node_table: pd.DataFrame) -> Dict[str, int]:
    """
    Map each mutation identifier to the first node number carrying it.
    """
    index = {}
    for node, muts in zip(node_table["node"], node_table["aa_muts"]):
        for mut in muts or []:
            if mut not in index or node < index[mut]:
                index[mut] = int(node)
    logger.debug(f"Indexed {len(index)} mutations across the tree")
    return index


def get_clade_node(mutations: Iterable[str], mutation_index: Dict[str, int]) -> Optional[int]:
    """
    Node number of the first node carrying any of ``mutations``.

    Returns
    -------
    int or None
        The lowest matching node number, or None if no node carries any of
        the mutations
    """
    hits = [mutation_index[m] for m in mutations if m in mutation_index]
    if not hits:
        return None
    return min(hits)


def resolve_clade_nodes(
    clades: pd.DataFrame,
    node_table: pd.DataFrame,
    mutation_column: str = "mutations",
    name_column: str = "clade_name",
) -> pd.DataFrame:
    """
    Add a ``node_number`` column to the clade table.

    Rows whose mutations are not found on any node are dropped. The drop
    is not an error, but it is logged with the affected clade names.

    Parameters
    ----------
    clades : pd.DataFrame
        Clade table with name and mutation columns
    node_table : pd.DataFrame
        Output of ``tree_node_table``
    mutation_column, name_column : str, optional
        Column names in ``clades``

    Returns
    -------
    pd.DataFrame
        Resolved clades in input order, with integer ``node_number``
    """
    index = build_mutation_index(node_table)

    resolved = clades.copy()
    resolved["node_number"] = [
        get_clade_node(split_mutations(value), index)
        for value in resolved[mutation_column]
    ]

    missing = resolved["node_number"].isna()
    if missing.any():
        dropped = resolved.loc[missing, name_column].tolist()
        logger.warning(
            f"  ⚠ Dropped {len(dropped)} clade(s) whose mutations are not in the tree: "
            f"{', '.join(str(d) for d in dropped)}"
        )

    resolved = resolved[~missing].copy()
    resolved["node_number"] = resolved["node_number"].astype(int)
    logger.info(f"  ✓ Resolved {len(resolved)}/{len(clades)} clades to tree nodes")
    return resolved.reset_index(drop=True)


def clades_by_number(tree: Tree) -> Dict[int, Clade]:
    """Inverse of ``number_nodes``: node number to clade."""
    return {node: clade for clade, node in number_nodes(tree).items()}
