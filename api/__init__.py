"""
FastAPI RESTful API for the Literary Database.

This module provides a REST API for:
- Browsing, searching and paginating books, authors, publishers and reviews
- Writing and moderating reviews with automatic rating upkeep
- Bearer session tokens for signed-in readers
"""
