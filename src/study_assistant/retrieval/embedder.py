"""Embedding abstractions and a deterministic baseline for local search."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from collections import Counter
from hashlib import blake2b
from math import sqrt

_WORD = re.compile(r"\w+", flags=re.UNICODE)


class Embedder(ABC):
    """Turns passages and queries into comparable vectors."""

    @abstractmethod
    def embed_passages(self, texts: list[str]) -> list[list[float]]:
        """Embed many passages."""

    @abstractmethod
    def embed_query(self, text: str) -> list[float]:
        """Embed one query."""


class HashingEmbedder(Embedder):
    """Feature-hashing embedder with sublinear term weights.

    Same text, same vector, across processes; no model download. Good enough
    to make the in-memory study index rank passages sensibly in tests.
    """

    def __init__(self, dimension: int = 256) -> None:
        if dimension < 8:
            raise ValueError("dimension must be at least 8")
        self.dimension = dimension

    def embed_passages(self, texts: list[str]) -> list[list[float]]:
        return [self._vectorize(text) for text in texts]

    def embed_query(self, text: str) -> list[float]:
        return self._vectorize(text)

    def _vectorize(self, text: str) -> list[float]:
        vector = [0.0] * self.dimension
        counts = Counter(token.lower() for token in _WORD.findall(text))
        for token, count in counts.items():
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            slot = int.from_bytes(digest[:4], "little") % self.dimension
            vector[slot] += 1.0 + (count - 1) ** 0.5
        norm = sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]


def cosine_similarity(a: list[float], b: list[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)
