"""Route exports for the API layer.

Re-exports the embeddings router so callers can include all endpoints with a single import.
"""

from .embeddings import router as embeddings_router

__all__ = ["embeddings_router"]
