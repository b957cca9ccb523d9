"""Semantic and keyword photo search"""

from .engine import SearchReport, SemanticSearchEngine, cosine_similarity

__all__ = ['SearchReport', 'SemanticSearchEngine', 'cosine_similarity']
