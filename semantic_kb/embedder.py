"""
Embedding providers for the knowledge base.

Two interchangeable strategies share the :class:`EmbeddingProvider`
interface:

* :class:`OnnxEmbedder`: a local sentence-embedding model exported to
  ONNX (``model.onnx`` + ``tokenizer.json``).  Inference is serialised
  through a lock because the session is not used concurrently.
* :class:`HashEmbedder`: a deterministic, model-free bag-of-position hash
  used when no model is installed.

:func:`create_embedder` picks one at construction time.
"""

from __future__ import annotations

import logging
import os
import threading
from abc import ABC, abstractmethod
from typing import Optional

import numpy as np

from .errors import EmbeddingError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_DIMENSION = 384
MODEL_FILE = "model.onnx"
TOKENIZER_FILE = "tokenizer.json"
MAX_TOKENS = 512
POOLING_MODES = ("cls", "mean")


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------

class EmbeddingProvider(ABC):
    """Turns text into a fixed-dimension float32 vector."""

    #: True when backed by a semantic model.
    is_semantic: bool = False

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Length of every vector this provider returns."""

    @abstractmethod
    def embed(self, text: str) -> np.ndarray:
        """Embed *text*.  Raises :class:`EmbeddingError` on failure."""


# ---------------------------------------------------------------------------
# Fallback provider
# ---------------------------------------------------------------------------

class HashEmbedder(EmbeddingProvider):
    """Deterministic character-position hash embedding.

    Each character at position ``i`` increments slot
    ``(ord(ch) + i) % dimension``; the result is L2-normalised.  This is not
    a semantic embedding: it only lets the knowledge base keep working when
    no model is available.
    """

    def __init__(self, dimension: int = DEFAULT_DIMENSION) -> None:
        if dimension <= 0:
            raise ValueError("dimension must be positive")
        self._dimension = dimension

    @property
    def dimension(self) -> int:
        return self._dimension

    def embed(self, text: str) -> np.ndarray:
        vec = np.zeros(self._dimension, dtype=np.float32)
        for i, ch in enumerate(text):
            vec[(ord(ch) + i) % self._dimension] += 1.0
        norm = np.linalg.norm(vec)
        if norm > 0:
            vec /= norm
        return vec


# ---------------------------------------------------------------------------
# Semantic provider
# ---------------------------------------------------------------------------

class OnnxEmbedder(EmbeddingProvider):
    """Sentence embeddings from a local ONNX model directory.

    Parameters
    ----------
    model_dir:
        Directory containing ``model.onnx`` and ``tokenizer.json``.
    pooling:
        ``"cls"`` (BGE-style, first token) or ``"mean"`` (attention-masked
        average over tokens).

    Raises
    ------
    EmbeddingError
        If the runtime libraries are missing or the model cannot be loaded.
    """

    is_semantic = True

    def __init__(self, model_dir: str, pooling: str = "cls") -> None:
        if pooling not in POOLING_MODES:
            raise EmbeddingError(f"Unknown pooling mode: {pooling!r}")
        try:
            import onnxruntime as ort  # type: ignore
            from tokenizers import Tokenizer  # type: ignore
        except ImportError as exc:
            raise EmbeddingError(
                "onnxruntime and tokenizers are required for semantic embeddings. "
                "Install them with: pip install 'semantic_kb[semantic]'"
            ) from exc

        model_path = os.path.join(model_dir, MODEL_FILE)
        tokenizer_path = os.path.join(model_dir, TOKENIZER_FILE)
        for path in (model_path, tokenizer_path):
            if not os.path.isfile(path):
                raise EmbeddingError(f"Model file not found: {path}")

        try:
            self._session = ort.InferenceSession(
                model_path, providers=["CPUExecutionProvider"]
            )
            self._tokenizer = Tokenizer.from_file(tokenizer_path)
        except Exception as exc:
            raise EmbeddingError(f"Failed to load model from {model_dir}: {exc}") from exc

        self._tokenizer.enable_truncation(max_length=MAX_TOKENS)
        self._input_names = {inp.name for inp in self._session.get_inputs()}
        self._pooling = pooling
        self._model_dir = model_dir
        self._lock = threading.Lock()
        self._dimension = self._probe_dimension()

    @property
    def dimension(self) -> int:
        return self._dimension

    def _probe_dimension(self) -> int:
        """Read the hidden size from the output shape, or run a dummy input."""
        shape = self._session.get_outputs()[0].shape
        if shape and isinstance(shape[-1], int):
            return shape[-1]
        return int(self._run("dimension probe").shape[0])

    def _run(self, text: str) -> np.ndarray:
        encoding = self._tokenizer.encode(text)
        input_ids = np.array([encoding.ids], dtype=np.int64)
        attention_mask = np.array([encoding.attention_mask], dtype=np.int64)
        feeds = {"input_ids": input_ids, "attention_mask": attention_mask}
        if "token_type_ids" in self._input_names:
            feeds["token_type_ids"] = np.array([encoding.type_ids], dtype=np.int64)
        feeds = {k: v for k, v in feeds.items() if k in self._input_names}

        hidden = self._session.run(None, feeds)[0]
        if hidden.ndim == 2:
            # Model already pools to (batch, dim)
            pooled = hidden[0]
        elif self._pooling == "cls":
            pooled = hidden[0, 0]
        else:
            mask = attention_mask[0].astype(np.float32)[:, None]
            pooled = (hidden[0] * mask).sum(axis=0) / max(float(mask.sum()), 1e-9)

        vec = np.asarray(pooled, dtype=np.float32)
        norm = np.linalg.norm(vec)
        if norm > 0:
            vec = vec / norm
        return vec

    def embed(self, text: str) -> np.ndarray:
        with self._lock:
            try:
                return self._run(text)
            except Exception as exc:
                raise EmbeddingError(f"Embedding inference failed: {exc}") from exc


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------

def create_embedder(
    model_dir: Optional[str] = None,
    dimension: int = DEFAULT_DIMENSION,
    pooling: str = "cls",
) -> EmbeddingProvider:
    """Pick the embedding provider for a knowledge base.

    Uses :class:`OnnxEmbedder` when *model_dir* holds a model, and
    :class:`HashEmbedder` otherwise.  A model that fails to load is logged
    and replaced by the fallback rather than aborting construction.
    """
    if not model_dir:
        logger.info("No model directory configured, using hash embeddings")
        return HashEmbedder(dimension)

    if not os.path.isfile(os.path.join(model_dir, MODEL_FILE)):
        logger.info("No %s in %s, using hash embeddings", MODEL_FILE, model_dir)
        return HashEmbedder(dimension)

    try:
        embedder = OnnxEmbedder(model_dir, pooling=pooling)
    except EmbeddingError as exc:
        logger.warning("Model load failed, falling back to hash embeddings: %s", exc)
        return HashEmbedder(dimension)

    logger.info(
        "Using ONNX semantic embeddings from %s (dim=%d)", model_dir, embedder.dimension
    )
    return embedder
