"""
Approval workflow for ingested source values.

A month's values must all be approved before downstream consumers
(newsletter drafting and sending) may use them.
"""

__all__ = ["workflow"]
