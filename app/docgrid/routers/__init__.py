"""
Routers package for FastAPI endpoints.

Organized by domain:
- extraction: Document and collection extraction
- documents: Document retrieval, manual edits and downloads
- collections: Collection aggregates and member management
- projects: Column deletion
"""

from . import collections, documents, extraction, projects

__all__ = ["collections", "documents", "extraction", "projects"]
