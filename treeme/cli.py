#!/usr/bin/env python3
"""
treeme Command-Line Interface

Render an annotated phylogenetic tree to PDF: tip labels colored and tip
points shaped by metadata columns, clade brackets located from mutation
annotations, branch mutation labels and a dated title.

Usage:
    treeme -t TREE.nhx -o OUTPUT.pdf -c CLADES.tsv -m META.tsv \\
           -l VARIABLE -p VARIABLE -g TITLE [-s A4p]
"""

import argparse
import sys
import logging
from pathlib import Path
from typing import Optional

import pandas as pd
from rich.console import Console
from rich.markup import escape

# Local imports
from . import __version__, utils, config, layout, metadata, phylogenetics, visualization

logger = logging.getLogger(__name__)

console = Console(stderr=True)

# dest -> flag shown when missing
REQUIRED_ARGUMENTS = {
    "tree": "--tree",
    "output": "--output",
    "clades": "--clades",
    "metaFile": "--metaFile",
    "colorTaxa": "--colorTaxa",
    "tipPoint": "--tipPoint",
    "title": "--title",
}


def _fail(message: str, error: Optional[BaseException] = None) -> bool:
    """Print a fatal diagnostic and return False for the caller to pass on."""
    console.print(f"[bold white on red]✗ {escape(message)}[/]")
    if error is not None:
        console.print(f"  [red]{escape(str(error))}[/]")
        logger.debug("Failure details:", exc_info=error)
    return False


def run_pipeline(
    tree_path: Path,
    output_path: Path,
    clades_path: Path,
    meta_path: Path,
    color_column: str,
    point_column: str,
    title: str,
    cfg: config.PipelineConfig,
) -> bool:
    """
    Read, validate and render the annotated tree.

    Every fatal condition is reported and stops the run before the output
    file is written.

    Parameters
    ----------
    tree_path : Path
        NHX / Newick or NEXUS tree file
    output_path : Path
        Output PDF path
    clades_path : Path
        Clade TSV (clade_name, mutations)
    meta_path : Path
        Metadata TSV; first column holds taxon names
    color_column : str
        Metadata column coloring tip labels
    point_column : str
        Metadata column coloring and shaping tip points
    title : str
        Plot title
    cfg : config.PipelineConfig
        Run configuration

    Returns
    -------
    bool
        True if the PDF was written, False otherwise
    """
    logger.info(f"treeme {__version__} run started {utils.get_timestamp()}")
    logger.info("Input arguments")
    logger.info(f"  Tree: {tree_path}")
    logger.info(f"  Output: {output_path}")
    logger.info(f"  Clade File: {clades_path}")
    logger.info(f"  Meta File: {meta_path}")
    logger.info(f"  Color labels by: {color_column}")
    logger.info(f"  Color node tips by: {point_column}")
    logger.info(f"  Title: {title}")
    logger.info(f"  Output Size: {cfg.paper_size}")

    for warning in config.validate_config(cfg):
        logger.warning(f"  ⚠ {warning}")

    # ========================================================================
    # Input checks
    # ========================================================================
    try:
        paper_size = layout.get_paper_size(cfg.paper_size)
    except ValueError as e:
        return _fail(str(e))

    if output_path.exists() and not cfg.overwrite_existing:
        return _fail(f"Output file already exists: {output_path}")

    try:
        tree = phylogenetics.read_annotated_tree(tree_path)
        logger.info("Success: Tree file was read.")
    except (OSError, ValueError) as e:
        return _fail("Reading tree file. Is it nhx?", e)

    try:
        meta = metadata.parse_metadata_tsv(meta_path)
        clades = metadata.parse_clades_tsv(clades_path)
        logger.info("Success: Meta file read.")
    except (OSError, ValueError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        return _fail(
            "Unable to read in meta or clade file. "
            "Do they exist and is the path correct?", e
        )

    try:
        metadata.validate_metadata_columns(meta, [color_column, point_column])
    except ValueError as e:
        return _fail(str(e))

    try:
        color_palette = metadata.load_color_palette(cfg.palettes.colors_file)
        shape_palette = metadata.load_shape_palette(cfg.palettes.shapes_file)
    except (OSError, ValueError) as e:
        return _fail("Unable to read palette files.", e)

    console.print("[green]~~~All Checks Okay - Plotting tree~~~[/green]")

    # ========================================================================
    # Derived data
    # ========================================================================
    tip_labels = [tip.name for tip in tree.get_terminals()]
    metadata.check_taxa_names(tip_labels, meta.iloc[:, 0].dropna())

    node_table = phylogenetics.tree_node_table(tree)
    resolved = phylogenetics.resolve_clade_nodes(clades, node_table)

    # ========================================================================
    # Plotting
    # ========================================================================
    try:
        visualization.plot_annotated_tree(
            tree=tree,
            meta=meta,
            clades=resolved,
            output_path=output_path,
            color_column=color_column,
            point_column=point_column,
            title=title,
            paper_size=paper_size,
            color_palette=color_palette,
            shape_palette=shape_palette,
            style=cfg.style,
            na_color=cfg.palettes.na_color,
            fallback_palette=cfg.palettes.fallback_palette,
            fallback_marker=cfg.palettes.fallback_marker,
        )
    except (OSError, ValueError, RuntimeError) as e:
        return _fail("Plotting failed.", e)

    size = utils.format_file_size(output_path.stat().st_size)
    logger.info(f"  ✓ Wrote {output_path} ({size})")
    return True


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser. Required inputs are checked after parsing."""
    parser = argparse.ArgumentParser(
        prog='treeme',
        description='Create a pretty annotated phylogenetic tree (PDF).',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Output:
  Phylogenetic tree with colored tip labels, tip points, clade brackets
  and branch mutation labels, saved as a single-page PDF.

Examples:
  treeme -t tree.nhx -o tree.pdf -c clades.tsv -m meta.tsv \\
         -l lineage -p country -g "Weekly report"
  treeme -t tree.nexus -o big.pdf -c clades.tsv -m meta.tsv \\
         -l lineage -p country -g "All genomes" -s A3p
        """
    )

    parser.add_argument('-t', '--tree', type=Path,
                        help='Input tree: NHX / extended Newick or NEXUS with node annotations')
    parser.add_argument('-o', '--output', type=Path,
                        help='Output name and path of graphics output (will be a pdf)')
    parser.add_argument('-c', '--clades', '--cladesFile', dest='clades', type=Path,
                        help='TSV file with clade_name and mutations columns')
    parser.add_argument('-m', '--metaFile', type=Path,
                        help='TSV meta file; first column must be taxa names matching the tree')
    parser.add_argument('-l', '--colorTaxa',
                        help='Variable name (in meta file) to color the taxa labels')
    parser.add_argument('-p', '--tipPoint',
                        help='Variable name (in meta file) to color and shape the tip points')
    parser.add_argument('-g', '--title',
                        help='Title of plot; the current date is added below it')
    parser.add_argument('-s', '--paperSize', default=None,
                        help=f"Size of output pdf: {', '.join(layout.PAPER_SIZES)} "
                             "(default: A4p). p = portrait, l = landscape")

    parser.add_argument('--colorsFile', type=Path, default=None,
                        help='Color palette TSV (categories, color_pal). Default: packaged palette')
    parser.add_argument('--shapesFile', type=Path, default=None,
                        help='Shape palette TSV (shape_cats, shapes_type, shape_colors). '
                             'Default: packaged palette')
    parser.add_argument('--config', type=Path, default=None,
                        help='YAML or JSON configuration file')
    parser.add_argument('--save-config', type=Path, default=None,
                        help='Write the effective configuration to this YAML or JSON file')
    parser.add_argument('--log-level', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        default=None, help='Logging verbosity (default: INFO)')
    parser.add_argument('--log-file', type=Path, default=None,
                        help='Also write log messages to this file')
    parser.add_argument('--version', action='version', version=f'treeme {__version__}')

    return parser


def main(argv=None) -> int:
    """Command-line entry point. Returns the process exit status."""
    parser = build_parser()
    args = parser.parse_args(argv)

    missing = [flag for dest, flag in REQUIRED_ARGUMENTS.items() if getattr(args, dest) is None]
    if missing:
        parser.print_usage(sys.stderr)
        console.print(f"[red]Missing arguments:[/red] [yellow]{escape(', '.join(missing))}[/yellow]")
        return 2

    # Load and configure run
    try:
        cfg = config.load_config_from_file(args.config) if args.config else config.get_default_config()
        cfg = cfg.update(**config.load_config_from_env())
        overrides = {}
        if args.paperSize is not None:
            overrides['paper_size'] = args.paperSize
        if args.log_level is not None:
            overrides['log_level'] = args.log_level
        if args.colorsFile is not None:
            overrides['palettes__colors_file'] = args.colorsFile
        if args.shapesFile is not None:
            overrides['palettes__shapes_file'] = args.shapesFile
        cfg = cfg.update(**overrides)
        if args.save_config is not None:
            cfg.save(args.save_config)
    except (OSError, ValueError, TypeError, ImportError) as e:
        _fail("Invalid configuration.", e)
        return 1

    utils.setup_logging(
        log_level=cfg.log_level,
        log_file=str(args.log_file) if args.log_file else None,
    )

    try:
        success = run_pipeline(
            tree_path=args.tree,
            output_path=args.output,
            clades_path=args.clades,
            meta_path=args.metaFile,
            color_column=args.colorTaxa,
            point_column=args.tipPoint,
            title=args.title,
            cfg=cfg,
        )
    except KeyboardInterrupt:
        console.print("\n\nInterrupted by user")
        return 130

    if not success:
        return 1

    console.print("[green]Done! Plotting was a success[/green]")
    return 0


if __name__ == '__main__':
    sys.exit(main())
