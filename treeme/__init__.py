"""
treeme: Annotated Phylogenetic Tree Rendering

treeme draws a phylogenetic tree as a publication-ready PDF page, styled
from a metadata table and annotated with named clades.

Core functionality includes:
- Reading NHX / extended Newick and NEXUS trees with per-node annotations
- Coloring tip labels and shaping tip points by metadata columns
- Locating clade-defining nodes from amino-acid mutation annotations
- Staggered clade brackets and branch mutation labels
- Dated plot titles and page-size-aware text sizing
"""

__version__ = "0.1.0"

# Import main modules for easy access
from . import utils
from . import layout
from . import config
from . import metadata
from . import phylogenetics
from . import visualization

__all__ = [
    "utils",
    "layout",
    "config",
    "metadata",
    "phylogenetics",
    "visualization",
]
