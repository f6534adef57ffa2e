"""
Tabular ledger (Google Sheets) access.

backend holds the raw sheet operations; sheets layers the partial-write
contract, z-score mirroring and Meta tab reads on top.
"""

__all__ = ["backend", "sheets"]
