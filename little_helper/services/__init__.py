"""Network services shared across components."""

from .embeddings import EmbeddingClient

__all__ = ["EmbeddingClient"]
