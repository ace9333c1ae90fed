"""Embedding infrastructure -- the query embedding client."""

from .client import Embedder, EmbeddingClient

__all__ = [
    "Embedder",
    "EmbeddingClient",
]
