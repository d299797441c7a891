"""
Visual product matching engine.

Orchestrates the query pipeline:
    1. Render the query image onto the analysis canvas and extract its
       normalized colour embedding
    2. Score it against every normalized catalog embedding by cosine
       similarity
    3. Rank by score (stable on ties) and keep the top K
    4. Optionally apply the display threshold and join with product data

rank() is the plain entrypoint for callers holding a catalog sequence.
SearchEngine keeps the normalized catalog in a FAISS inner-product index
so repeated queries against the same catalog skip renormalization.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import faiss
import numpy as np

from .catalog import CatalogEntry, load_catalog
from .embedding import EMBEDDING_DIM, extract_embedding
from .scoring import (
    DEFAULT_THRESHOLD, DEFAULT_TOP_K, SimilarityScore,
    filter_by_threshold, normalize_vector, rank_embeddings, rank_results,
    similarity_score,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProductMatch:
    """A catalog entry paired with its rounded similarity percentage."""

    entry: CatalogEntry
    similarity: int

    def to_dict(self) -> dict:
        data = self.entry.to_dict()
        data["similarity"] = self.similarity
        return data


def rank(query_image: np.ndarray,
         catalog: Sequence[CatalogEntry],
         top_k: int = DEFAULT_TOP_K) -> List[SimilarityScore]:
    """
    Rank catalog entries by visual similarity to a query image.

    Args:
        query_image: Decoded query image.
        catalog: Catalog entries in insertion order.
        top_k: Maximum number of results.

    Returns:
        (id, score) pairs, score in [0, 100], highest first.

    Raises:
        DecodeError: If the query image cannot be rendered.
    """
    query = extract_embedding(query_image)
    return rank_embeddings(query, ((e.id, e.embedding) for e in catalog), top_k)


def _join_matches(scores: List[SimilarityScore],
                  catalog: Sequence[CatalogEntry],
                  threshold: float) -> List[ProductMatch]:
    by_id = {entry.id: entry for entry in catalog}
    return [
        ProductMatch(entry=by_id[entry_id], similarity=int(round(score)))
        for entry_id, score in filter_by_threshold(scores, threshold)
        if entry_id in by_id
    ]


def match_products(query_image: np.ndarray,
                   catalog: Sequence[CatalogEntry],
                   top_k: int = DEFAULT_TOP_K,
                   threshold: float = DEFAULT_THRESHOLD) -> List[ProductMatch]:
    """
    Rank, drop results below the display threshold, and attach product data.

    The threshold is applied to the exact scores; the similarity on each
    returned match is rounded for display.
    """
    return _join_matches(rank(query_image, catalog, top_k), catalog, threshold)


class SearchEngine:
    """
    Catalog-bound similarity search.

    Normalizes the catalog embeddings once into an exact FAISS
    inner-product index, then accepts query images and returns ranked
    scores.
    """

    def __init__(self, catalog: Sequence[CatalogEntry]):
        """
        Build the inner-product index for a validated catalog.

        Args:
            catalog: Entries as returned by load_catalog().
        """
        self.catalog = tuple(catalog)
        self.index = faiss.IndexFlatIP(EMBEDDING_DIM)

        if self.catalog:
            vectors = np.vstack([
                normalize_vector(entry.embedding) for entry in self.catalog
            ]).astype(np.float32)
            self.index.add(vectors)

        logger.info(
            f"Built catalog index: {self.index.ntotal} vectors, "
            f"{self.index.d}d"
        )

    @classmethod
    def from_path(cls, path: Optional[str] = None) -> "SearchEngine":
        """Load the catalog JSON file and build an engine over it."""
        return cls(load_catalog(path))

    def __len__(self) -> int:
        return len(self.catalog)

    def search_embedding(self,
                         query: Sequence[float],
                         top_k: int = DEFAULT_TOP_K) -> List[SimilarityScore]:
        """
        Rank the catalog against an already extracted embedding.

        Returns:
            (id, score) pairs sorted by score descending; ties keep
            catalog order.
        """
        if top_k <= 0 or not self.catalog:
            return []

        query_unit = normalize_vector(query)
        query_vector = query_unit.astype(np.float32).reshape(1, -1)
        if query_vector.shape[1] != self.index.d:
            raise ValueError(
                f"Query dimension {query_vector.shape[1]} doesn't match "
                f"index dimension {self.index.d}"
            )

        # Exhaustive search so that every entry is a hit. FAISS scores in
        # float32; hits are rescored in float64 and taken in catalog order
        # so results are identical to rank().
        _, indices = self.index.search(query_vector, self.index.ntotal)
        hits = sorted(int(i) for i in indices[0] if i >= 0)

        scores = [
            (self.catalog[i].id, similarity_score(query_unit, self.catalog[i].embedding))
            for i in hits
        ]
        return rank_results(scores)[:top_k]

    def search(self,
               query_image: np.ndarray,
               top_k: int = DEFAULT_TOP_K) -> List[SimilarityScore]:
        """
        Rank the catalog by visual similarity to a query image.

        Raises:
            DecodeError: If the query image cannot be rendered.
        """
        results = self.search_embedding(extract_embedding(query_image), top_k)
        logger.info(
            f"Search complete: {len(self.catalog)} candidates → "
            f"{len(results)} results"
        )
        return results

    def match(self,
              query_image: np.ndarray,
              top_k: int = DEFAULT_TOP_K,
              threshold: float = DEFAULT_THRESHOLD) -> List[ProductMatch]:
        """Search, apply the display threshold and attach product data."""
        return _join_matches(self.search(query_image, top_k), self.catalog, threshold)
