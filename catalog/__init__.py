"""
Catalog core for the Literary Database API.

This package contains:
- Entity models and shared enumerations
- MongoDB connection and index management
- List query construction (filters, sorting, pagination)
- Rating and book-count aggregate maintenance
- Entity services for books, authors, publishers, reviews and users
"""

__version__ = "1.0.0"
