"""
Core modules for Catalog Optimizer.

This package contains classification rules, fallback heuristics,
permission checks and the optimization orchestrator.
"""
