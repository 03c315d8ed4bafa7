"""
Librarian: library management backend.

Catalog, member registry, staff accounts and the circulation engine
(checkout, return, fines, renewal) behind a Flask JSON API.
"""

__version__ = "1.0.0"
