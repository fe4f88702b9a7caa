"""
Catalog Optimizer.

Applies generated product content to a storefront catalog, metered by
per-account credits.
"""

__version__ = "0.1.0"
