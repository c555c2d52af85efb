"""Procurement approvals.

Policy-driven approval workflows, a generic state machine and cost delta
calculations for purchase orders.
"""

__version__ = "0.1.0"
