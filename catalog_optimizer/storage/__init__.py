"""
Storage layer: credit ledger and optimization records.
"""
