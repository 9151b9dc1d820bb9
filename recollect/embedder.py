"""
Embeddings - turning text into numbers.

Similar meanings land on nearby vectors, which is what lets us find
"we picked Postgres" when someone asks about "the database".
The model is loaded on first use; loading takes a few seconds.
"""

import asyncio
from typing import Optional

from recollect.errors import EmbeddingError
from recollect.log import get_logger

logger = get_logger("embedder")

DEFAULT_MODEL = "all-mpnet-base-v2"


class SentenceTransformerEmbedder:
    """Embedder backed by a local sentence-transformers model."""

    def __init__(self, model_name: str = DEFAULT_MODEL, model=None):
        self.model_name = model_name
        self._model = model
        self._dimension: Optional[int] = None

    @property
    def model(self):
        """Load the model the first time it's needed."""
        if self._model is None:
            from sentence_transformers import SentenceTransformer
            logger.info(f"Loading embedding model {self.model_name}")
            self._model = SentenceTransformer(self.model_name)
        return self._model

    @property
    def dimension(self) -> int:
        if self._dimension is None:
            self._dimension = int(self.model.get_sentence_embedding_dimension())
        return self._dimension

    async def embed(self, text: str) -> list[float]:
        vectors = await self.embed_batch([text])
        return vectors[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        try:
            encoded = await asyncio.to_thread(self.model.encode, list(texts))
        except Exception as e:
            raise EmbeddingError(f"Embedding {len(texts)} texts with {self.model_name} failed: {e}") from e
        vectors = [row.tolist() for row in encoded]
        if len(vectors) != len(texts):
            raise EmbeddingError(f"Expected {len(texts)} embeddings, got {len(vectors)}")
        return vectors
