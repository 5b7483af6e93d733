"""
ERP Kernel - multi-stage document approval.

The approval core of the internal ERP:
- Typed approval state machine (tiered approver lines)
- Atomic status + history + notification writes
- Pending-work aggregation across request kinds
- Legacy status normalization at the read boundary
"""

__version__ = "0.1.0"
