"""Approval request database models.

One row per request, one child row per request step, one row per step
decision and an append-only audit table. Actors are stored as JSON
snapshots alongside their id.
"""

from sqlalchemy import JSON, Column, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from procurement.db.base import Base, UTCDateTime, utcnow


class ApprovalRequestRecord(Base):
    """
    Persisted approval request.

    ``version`` is the optimistic concurrency token: updates only succeed
    against the version that was read.
    """
    __tablename__ = "approval_requests"

    id = Column(String(64), primary_key=True)
    policy_id = Column(String(100), nullable=False, index=True)
    workflow_id = Column(String(100), nullable=False)

    # Governed object
    object_type = Column(String(50), nullable=False, index=True)
    object_id = Column(String(100), nullable=False, index=True)
    object_label = Column(String(255), nullable=True)

    # Workflow state
    status = Column(String(20), nullable=False, default="in_progress", index=True)
    current_step_index = Column(Integer, nullable=False, default=0)

    # Requester
    requester_id = Column(String(100), nullable=False, index=True)
    requester = Column(JSON, nullable=False)

    trigger_reason = Column(Text, nullable=False, default="")
    trigger_data = Column(JSON, nullable=False, default=dict)

    # Outcome
    final_decision = Column(String(20), nullable=True)
    final_decision_at = Column(UTCDateTime, nullable=True)
    final_decision_by = Column(JSON, nullable=True)
    final_notes = Column(Text, nullable=True)

    # Timeouts and escalation
    expires_at = Column(UTCDateTime, nullable=True, index=True)
    escalation_count = Column(Integer, nullable=False, default=0)
    last_escalated_at = Column(UTCDateTime, nullable=True)

    extra_data = Column(JSON, nullable=False, default=dict)
    version = Column(Integer, nullable=False, default=1)

    # Timestamps
    created_at = Column(UTCDateTime, default=utcnow, index=True)
    updated_at = Column(UTCDateTime, default=utcnow)

    # Relationships
    steps = relationship(
        "ApprovalStepRecord",
        back_populates="request",
        order_by="ApprovalStepRecord.position",
        cascade="all, delete-orphan",
    )
    audit_entries = relationship(
        "ApprovalAuditRecord",
        back_populates="request",
        order_by="ApprovalAuditRecord.position",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version, "version_id_generator": False}

    def __repr__(self) -> str:
        return f"<ApprovalRequest {self.object_type}:{self.object_id} [{self.status}] v{self.version}>"


class ApprovalStepRecord(Base):
    """One step of a persisted request. Approver assignments are stored as JSON."""
    __tablename__ = "approval_request_steps"

    id = Column(String(64), primary_key=True)
    request_id = Column(
        String(64), ForeignKey("approval_requests.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position = Column(Integer, nullable=False)

    step_definition_id = Column(String(100), nullable=False)
    name = Column(String(255), nullable=False)
    step_order = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    required_approvals = Column(Integer, nullable=False, default=1)
    assigned_approvers = Column(JSON, nullable=False, default=list)
    notes = Column(Text, nullable=True)

    activated_at = Column(UTCDateTime, nullable=True)
    completed_at = Column(UTCDateTime, nullable=True)
    due_at = Column(UTCDateTime, nullable=True)

    request = relationship("ApprovalRequestRecord", back_populates="steps")
    decisions = relationship(
        "StepDecisionRecord",
        back_populates="step",
        order_by="StepDecisionRecord.position",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<ApprovalStep {self.name} [{self.status}]>"


class StepDecisionRecord(Base):
    """An approver's vote on a step."""
    __tablename__ = "approval_step_decisions"

    id = Column(String(64), primary_key=True)
    step_id = Column(
        String(64), ForeignKey("approval_request_steps.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position = Column(Integer, nullable=False)

    approver_id = Column(String(100), nullable=False, index=True)
    approver = Column(JSON, nullable=False)
    decision = Column(String(20), nullable=False)
    notes = Column(Text, nullable=True)
    attachments = Column(JSON, nullable=False, default=list)

    decided_at = Column(UTCDateTime, nullable=False)

    step = relationship("ApprovalStepRecord", back_populates="decisions")

    def __repr__(self) -> str:
        return f"<StepDecision {self.approver_id} {self.decision}>"


class ApprovalAuditRecord(Base):
    """
    Append-only audit trail for approval requests.

    Records creation, every decision, cancellation, escalation and expiry.
    """
    __tablename__ = "approval_audit_log"

    id = Column(String(64), primary_key=True)
    request_id = Column(
        String(64), ForeignKey("approval_requests.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position = Column(Integer, nullable=False)

    action = Column(String(50), nullable=False)
    actor_id = Column(String(100), nullable=False, index=True)
    actor = Column(JSON, nullable=False)
    details = Column(JSON, nullable=False, default=dict)

    timestamp = Column(UTCDateTime, nullable=False, index=True)

    request = relationship("ApprovalRequestRecord", back_populates="audit_entries")

    def __repr__(self) -> str:
        return f"<ApprovalAudit {self.action} by {self.actor_id}>"
