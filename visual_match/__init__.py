"""
visual_match — Colour-based visual product matching.

Reduces images to a 6-dimensional colour/tone embedding and ranks a
static product catalog by cosine similarity, with a URL normalizer and
an image proxy for fetching remote query images.

Modules:
    engine          rank(), match_products() and the SearchEngine class
    embedding       Embedding extraction from pixel data
    scoring         Vector normalization, cosine scoring, ranking
    preprocessing   Image decoding and canvas resampling
    catalog         Catalog loading and validation
    index_builder   Offline catalog embedding builder
    urls            Image URL normalization and validation
    proxy           FastAPI image acquisition proxy
    acquisition     Proxy-then-direct remote image loading
    errors          Exception types
"""

from .catalog import CatalogEntry, load_catalog
from .engine import ProductMatch, SearchEngine, match_products, rank
from .errors import DataError, DecodeError, TransportError, ValidationError, VisualMatchError

__version__ = "1.0.0"
