"""Embedding client: one text in, one vector out, via LiteLLM.

All embedding calls in the pipeline (chunk embedding, query embedding for
search and context packing) route through ``Embedder``. With the default
``ollama/nomic-embed-text`` model LiteLLM posts ``{model, input}`` to the
Ollama ``/api/embed`` endpoint at ``api_base``.
"""

from __future__ import annotations

import litellm
from loguru import logger

from onyx.config import EmbeddingCfg
from onyx.errors import EmbeddingError

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True


class Embedder:
    """Produce embedding vectors with the configured model.

    Args:
        config: Embedding section of OnyxConfig (model, api_base, dimensions, timeout).
    """

    def __init__(self, config: EmbeddingCfg | None = None) -> None:
        self._config = config or EmbeddingCfg()

    @property
    def model(self) -> str:
        return self._config.model

    @property
    def dimensions(self) -> int:
        return self._config.dimensions

    def embed(self, text: str) -> list[float]:
        """Return the embedding of *text*.

        Raises:
            EmbeddingError: the service failed, or returned a vector of the
                wrong length / no vector at all.
        """
        try:
            response = litellm.embedding(
                model=self._config.model,
                input=[text],
                api_base=self._config.api_base,
                timeout=self._config.timeout,
            )
        except Exception as exc:
            raise EmbeddingError(getattr(exc, "status_code", None), str(exc)) from exc

        try:
            vector = [float(x) for x in response.data[0]["embedding"]]
        except (AttributeError, IndexError, KeyError, TypeError, ValueError) as exc:
            raise EmbeddingError(None, f"malformed embedding response: {exc}") from exc

        if len(vector) != self._config.dimensions:
            raise EmbeddingError(
                None,
                f"expected {self._config.dimensions} dimensions from "
                f"'{self._config.model}', got {len(vector)}",
            )
        logger.debug(f"[embeddings] embedded {len(text)} chars with {self._config.model}")
        return vector
