"""
Product text embeddings for semantic search.
"""
import logging
import math
from typing import Iterable, List, Optional, Sequence

from langchain_openai import OpenAIEmbeddings

from config import get_settings

logger = logging.getLogger(__name__)

EMBEDDING_MODEL = "text-embedding-3-small"
MATCH_THRESHOLD = 0.7


class EmbeddingError(RuntimeError):
    pass


def product_text(name: str, description: Optional[str]) -> str:
    return f"{name} {description or ''}".strip()


class ProductEmbedder:
    def __init__(self, api_key: str, model: str = EMBEDDING_MODEL):
        self.model = model
        self._client = OpenAIEmbeddings(model=model, api_key=api_key)

    def embed(self, text: str) -> List[float]:
        try:
            return self._client.embed_query(text)
        except Exception as e:
            logger.error("Embedding request failed: %s", e)
            raise EmbeddingError("Failed to generate embedding") from e

    def embed_product(self, name: str, description: Optional[str]) -> List[float]:
        return self.embed(product_text(name, description))


_embedder: Optional[ProductEmbedder] = None


def get_embedder() -> ProductEmbedder:
    global _embedder
    if _embedder is None:
        _embedder = ProductEmbedder(get_settings().openai_api_key)
    return _embedder


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    if norm == 0:
        return 0.0
    return dot / norm


def rank_by_similarity(vector: Sequence[float], products: Iterable[dict],
                       threshold: float = MATCH_THRESHOLD, limit: int = 20) -> List[dict]:
    """Return products whose embedding is more similar than ``threshold``,
    best first, without the raw embedding and with a ``similarity`` score."""
    scored = []
    for p in products:
        emb = p.get("embedding")
        if not emb:
            continue
        score = cosine_similarity(vector, emb)
        if score > threshold:
            doc = {k: v for k, v in p.items() if k != "embedding"}
            doc["similarity"] = round(score, 4)
            scored.append(doc)
    scored.sort(key=lambda d: d["similarity"], reverse=True)
    return scored[:limit]
