"""Domain engines for procurement approvals.

Pure, synchronous engines. Approval requests move through the generic
state machine; cost deltas feed the policy triggers.
"""
