"""
Document Grid Extraction Backend.

A FastAPI service that extracts prompted column values from uploaded
documents (images and PDFs) using AI (OpenAI GPT-4o) and folds them into
collection-level aggregates.
"""

__version__ = "1.0.0"
