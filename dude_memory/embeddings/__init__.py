"""
Embedding provider abstraction and implementations.

Provides:
- Abstract EmbeddingProvider interface
- OpenAI implementation (shortened text-embedding-3-small)
- Local sentence-transformers implementation (optional ``local`` extra)
- LRU cache for repeated texts
- Resilience utilities (retry, circuit breaker)
"""

from .base import EmbeddingProvider, normalize
from .cache import EmbeddingCache
from .resilience import CircuitBreaker, CircuitOpenError, RetryConfig

__all__ = [
    "EmbeddingProvider",
    "EmbeddingCache",
    "CircuitBreaker",
    "CircuitOpenError",
    "RetryConfig",
    "normalize",
]
