import re
import secrets
import time
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import StrEnum, auto

from marshmallow import ValidationError
from sqlalchemy import event
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import Mapped, validates

from ..auth.permissions import register_entity
from ..database import db, Column, Base, utcnow
from ..logger import make_logger
from .errors import (
    CurrencyMismatch, InvalidAssignmentState, RecordNotFound, TransitionNotAllowed,
)

logger = make_logger('consultrack.staffing')

CENTS = Decimal('0.01')
ZERO = Decimal('0')
STANDARD_WORK_WEEK_HOURS = Decimal('40')

CODE_PATTERN = re.compile(r'^ASN-[A-Z0-9]+$')
BASE36 = '0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ'


class AssignmentStatus(StrEnum):
    PROPOSED = auto()
    PENDING_APPROVAL = auto()
    CONFIRMED = auto()
    ACTIVE = auto()
    ON_HOLD = auto()
    COMPLETED = auto()
    CANCELLED = auto()
    TERMINATED = auto()


TRANSITIONS: dict[AssignmentStatus | None, frozenset[AssignmentStatus]] = {
    None: frozenset({AssignmentStatus.PROPOSED}),
    AssignmentStatus.PROPOSED: frozenset({
        AssignmentStatus.PENDING_APPROVAL,
        AssignmentStatus.CONFIRMED,
        AssignmentStatus.CANCELLED,
    }),
    AssignmentStatus.PENDING_APPROVAL: frozenset({
        AssignmentStatus.CONFIRMED,
        AssignmentStatus.CANCELLED,
    }),
    AssignmentStatus.CONFIRMED: frozenset({
        AssignmentStatus.ACTIVE,
        AssignmentStatus.ON_HOLD,
        AssignmentStatus.CANCELLED,
    }),
    AssignmentStatus.ACTIVE: frozenset({
        AssignmentStatus.ON_HOLD,
        AssignmentStatus.COMPLETED,
        AssignmentStatus.TERMINATED,
        AssignmentStatus.CANCELLED,
    }),
    AssignmentStatus.ON_HOLD: frozenset({
        AssignmentStatus.ACTIVE,
        AssignmentStatus.CANCELLED,
        AssignmentStatus.TERMINATED,
    }),
    AssignmentStatus.COMPLETED: frozenset(),
    AssignmentStatus.CANCELLED: frozenset(),
    AssignmentStatus.TERMINATED: frozenset(),
}

TERMINAL_STATUSES = frozenset(status for status, targets in TRANSITIONS.items() if status and not targets)
# Statuses that consume a consultant's capacity
ALLOCATED_STATUSES = (AssignmentStatus.CONFIRMED, AssignmentStatus.ACTIVE)
REPORTABLE_STATUSES = (AssignmentStatus.ACTIVE, AssignmentStatus.COMPLETED)


class ApprovalStatus(StrEnum):
    PENDING = auto()
    APPROVED = auto()
    REJECTED = auto()
    SKIPPED = auto()


class ExtensionStatus(StrEnum):
    PENDING = auto()
    APPROVED = auto()
    REJECTED = auto()


class MilestoneStatus(StrEnum):
    PENDING = auto()
    IN_PROGRESS = auto()
    COMPLETED = auto()
    MISSED = auto()


class RoleLevel(StrEnum):
    JUNIOR = auto()
    MID = auto()
    SENIOR = auto()
    LEAD = auto()
    PRINCIPAL = auto()
    DIRECTOR = auto()
    PARTNER = auto()


class WorkLocation(StrEnum):
    REMOTE = auto()
    ON_SITE = auto()
    HYBRID = auto()
    CLIENT_SITE = auto()
    FLEXIBLE = auto()


class RateType(StrEnum):
    HOURLY = auto()
    DAILY = auto()
    WEEKLY = auto()
    MONTHLY = auto()
    FIXED = auto()
    MILESTONE = auto()


class AssignmentSource(StrEnum):
    MANUAL = auto()
    STAFFING_REQUEST = auto()
    RESOURCE_PLANNING = auto()
    EXTENSION = auto()
    ROLLOVER = auto()
    API = auto()
    IMPORT = auto()


class NoteType(StrEnum):
    GENERAL = auto()
    PERFORMANCE = auto()
    CLIENT_FEEDBACK = auto()
    ISSUE = auto()
    MILESTONE = auto()


class NotePriority(StrEnum):
    LOW = auto()
    NORMAL = auto()
    HIGH = auto()
    URGENT = auto()


class NoteVisibility(StrEnum):
    INTERNAL = auto()
    CLIENT = auto()
    CONSULTANT = auto()


class DocumentType(StrEnum):
    SOW = auto()
    CONTRACT = auto()
    TIMESHEET = auto()
    INVOICE = auto()
    REPORT = auto()
    OTHER = auto()


def _base36(number: int) -> str:
    digits = ''
    while True:
        number, remainder = divmod(number, 36)
        digits = BASE36[remainder] + digits
        if not number:
            return digits


def generate_assignment_code() -> str:
    return f"ASN-{_base36(int(time.time() * 1000))}{secrets.token_hex(3).upper()}"


def weekly_hours(allocation_percentage) -> Decimal:
    return (Decimal(str(allocation_percentage)) / 100 * STANDARD_WORK_WEEK_HOURS).quantize(CENTS, ROUND_HALF_UP)


def assert_same_currency(*currencies: str | None):
    distinct = {currency.upper() for currency in currencies if currency}
    if len(distinct) > 1:
        raise CurrencyMismatch(f"Rates and budget must share a currency, got {', '.join(sorted(distinct))}.")


@register_entity
class Tenant(Base):
    id: Mapped[int] = Column(db.Integer, primary_key=True)
    name: Mapped[str] = Column(db.String, unique=True, nullable=False)


class Organization(Base):
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "name"),
    )
    id: Mapped[int] = Column(db.Integer, primary_key=True)
    tenant_id: Mapped[int] = Column(db.Integer, db.ForeignKey("tenant.id"), nullable=False)
    name: Mapped[str] = Column(db.String, nullable=False)


@register_entity
class Client(Base):
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "code"),
    )
    id: Mapped[int] = Column(db.Integer, primary_key=True)
    tenant_id: Mapped[int] = Column(db.Integer, db.ForeignKey("tenant.id"), nullable=False)
    code: Mapped[str] = Column(db.String, nullable=False)
    name: Mapped[str] = Column(db.String, nullable=False)


@register_entity
class Consultant(Base):
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "code"),
    )
    id: Mapped[int] = Column(db.Integer, primary_key=True)
    tenant_id: Mapped[int] = Column(db.Integer, db.ForeignKey("tenant.id"), nullable=False)
    organization_id: Mapped[int] = Column(db.Integer, db.ForeignKey("organization.id"))
    code: Mapped[str] = Column(db.String, nullable=False)
    first_name: Mapped[str] = Column(db.String, nullable=False)
    last_name: Mapped[str] = Column(db.String, nullable=False)
    email: Mapped[str] = Column(db.String)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


@register_entity
class Project(Base):
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "code"),
    )
    id: Mapped[int] = Column(db.Integer, primary_key=True)
    tenant_id: Mapped[int] = Column(db.Integer, db.ForeignKey("tenant.id"), nullable=False)
    client_id: Mapped[int] = Column(db.Integer, db.ForeignKey("client.id"))
    code: Mapped[str] = Column(db.String, nullable=False)
    name: Mapped[str] = Column(db.String, nullable=False)


class AssignmentStatusHistory(Base):
    id: Mapped[int] = Column(db.Integer, primary_key=True)
    assignment_id: Mapped[int] = Column(db.Integer, db.ForeignKey("assignment.id"), nullable=False)
    previous_status: Mapped[AssignmentStatus] = Column(db.Enum(AssignmentStatus))
    status: Mapped[AssignmentStatus] = Column(db.Enum(AssignmentStatus), nullable=False)
    changed_at: Mapped[datetime] = Column(db.DateTime, nullable=False)
    changed_by: Mapped[int] = Column(db.Integer)
    reason: Mapped[str] = Column(db.String)


class AssignmentApprovalLevel(Base):
    __table_args__ = (
        db.UniqueConstraint("assignment_id", "level"),
    )
    id: Mapped[int] = Column(db.Integer, primary_key=True)
    assignment_id: Mapped[int] = Column(db.Integer, db.ForeignKey("assignment.id"), nullable=False)
    level: Mapped[int] = Column(db.Integer, nullable=False)
    approver_id: Mapped[int] = Column(db.Integer)
    role: Mapped[str] = Column(db.String)
    status: Mapped[ApprovalStatus] = Column(db.Enum(ApprovalStatus), nullable=False, default=ApprovalStatus.PENDING)
    decided_by: Mapped[int] = Column(db.Integer)
    decided_at: Mapped[datetime] = Column(db.DateTime)
    comments: Mapped[str] = Column(db.String)


class AssignmentExtension(Base):
    id: Mapped[int] = Column(db.Integer, primary_key=True)
    assignment_id: Mapped[int] = Column(db.Integer, db.ForeignKey("assignment.id"), nullable=False)
    original_end_date: Mapped[date] = Column(db.Date)
    new_end_date: Mapped[date] = Column(db.Date, nullable=False)
    reason: Mapped[str] = Column(db.String, nullable=False)
    requested_by: Mapped[int] = Column(db.Integer)
    requested_at: Mapped[datetime] = Column(db.DateTime, nullable=False)
    approved_by: Mapped[int] = Column(db.Integer)
    approved_at: Mapped[datetime] = Column(db.DateTime)
    status: Mapped[ExtensionStatus] = Column(db.Enum(ExtensionStatus), nullable=False, default=ExtensionStatus.PENDING)


class AssignmentMilestone(Base):
    id: Mapped[int] = Column(db.Integer, primary_key=True)
    assignment_id: Mapped[int] = Column(db.Integer, db.ForeignKey("assignment.id"), nullable=False)
    name: Mapped[str] = Column(db.String, nullable=False)
    description: Mapped[str] = Column(db.String)
    target_date: Mapped[date] = Column(db.Date)
    actual_date: Mapped[date] = Column(db.Date)
    status: Mapped[MilestoneStatus] = Column(db.Enum(MilestoneStatus), nullable=False, default=MilestoneStatus.PENDING)


class AssignmentNote(Base):
    id: Mapped[int] = Column(db.Integer, primary_key=True)
    assignment_id: Mapped[int] = Column(db.Integer, db.ForeignKey("assignment.id"), nullable=False)
    note_code: Mapped[str] = Column(db.String, nullable=False)
    type: Mapped[NoteType] = Column(db.Enum(NoteType), nullable=False, default=NoteType.GENERAL)
    content: Mapped[str] = Column(db.Text, nullable=False)
    priority: Mapped[NotePriority] = Column(db.Enum(NotePriority), nullable=False, default=NotePriority.NORMAL)
    visibility: Mapped[NoteVisibility] = Column(
        db.Enum(NoteVisibility), nullable=False, default=NoteVisibility.INTERNAL)
    created_by: Mapped[int] = Column(db.Integer)
    created_at: Mapped[datetime] = Column(db.DateTime, nullable=False)


class AssignmentDocument(Base):
    id: Mapped[int] = Column(db.Integer, primary_key=True)
    assignment_id: Mapped[int] = Column(db.Integer, db.ForeignKey("assignment.id"), nullable=False)
    name: Mapped[str] = Column(db.String, nullable=False)
    type: Mapped[DocumentType] = Column(db.Enum(DocumentType), nullable=False, default=DocumentType.OTHER)
    url: Mapped[str] = Column(db.String)
    description: Mapped[str] = Column(db.String)
    uploaded_by: Mapped[int] = Column(db.Integer)
    uploaded_at: Mapped[datetime] = Column(db.DateTime, nullable=False)
    version: Mapped[int] = Column(db.Integer, nullable=False, default=1)


DESCRIPTIVE_FIELDS = frozenset({
    'title',
    'description',
    'work_location',
    'tags',
})
CAPACITY_FIELDS = frozenset({
    'allocation_percentage',
    'hours_per_week',
    'hours_per_day',
    'estimated_hours',
    'budget_allocated',
    'expenses_limit',
    'expenses_spent',
})
PLANNING_FIELDS = DESCRIPTIVE_FIELDS | CAPACITY_FIELDS | {
    'role',
    'role_level',
    'proposed_start',
    'proposed_end',
}
ALL_EDITABLE_FIELDS = PLANNING_FIELDS | {
    'project_id',
    'engagement_id',
    'billable',
    'rate_type',
    'client_rate_amount',
    'client_rate_currency',
    'cost_rate_amount',
    'cost_rate_currency',
    'budget_currency',
}

EDITABLE_FIELDS_BY_STATUS = {
    AssignmentStatus.PROPOSED: ALL_EDITABLE_FIELDS,
    AssignmentStatus.PENDING_APPROVAL: DESCRIPTIVE_FIELDS,
    AssignmentStatus.CONFIRMED: PLANNING_FIELDS,
    # End date moves only through extensions once work has started
    AssignmentStatus.ACTIVE: DESCRIPTIVE_FIELDS | CAPACITY_FIELDS,
    AssignmentStatus.ON_HOLD: DESCRIPTIVE_FIELDS | CAPACITY_FIELDS,
}


@register_entity
class Assignment(Base):
    """
    Assignment binds a consultant to a client (and optionally a project or
    engagement) for a period of time at a given allocation and rate.

    Status only changes through `transition`, which records one history row
    per change. Budget and hour balances are recomputed on every flush.
    """
    id: Mapped[int] = Column(db.Integer, primary_key=True)
    version: Mapped[int] = Column(db.Integer, nullable=False)

    # Identity
    code: Mapped[str] = Column(db.String, unique=True, nullable=False)
    tenant_id: Mapped[int] = Column(db.Integer, db.ForeignKey("tenant.id"), nullable=False)
    organization_id: Mapped[int] = Column(db.Integer, db.ForeignKey("organization.id"))

    # Relationships
    consultant_id: Mapped[int] = Column(db.Integer, db.ForeignKey("consultant.id"), nullable=False)
    consultant: Mapped["Consultant"] = db.relationship("Consultant")
    client_id: Mapped[int] = Column(db.Integer, db.ForeignKey("client.id"), nullable=False)
    client: Mapped["Client"] = db.relationship("Client")
    project_id: Mapped[int] = Column(db.Integer, db.ForeignKey("project.id"))
    project: Mapped["Project"] = db.relationship("Project")
    engagement_id: Mapped[int] = Column(db.Integer, comment="Opaque reference to an engagement record.")

    # Details
    title: Mapped[str] = Column(db.String)
    description: Mapped[str] = Column(db.Text)
    role: Mapped[str] = Column(db.String, nullable=False)
    role_level: Mapped[RoleLevel] = Column(db.Enum(RoleLevel))
    work_location: Mapped[WorkLocation] = Column(db.Enum(WorkLocation))

    # Timeline
    proposed_start: Mapped[date] = Column(db.Date)
    proposed_end: Mapped[date] = Column(db.Date)
    actual_start: Mapped[date] = Column(db.Date)
    actual_end: Mapped[date] = Column(db.Date)

    # Allocation
    allocation_percentage: Mapped[Decimal] = Column(db.Numeric(5, 2), nullable=False)
    hours_per_week: Mapped[Decimal] = Column(db.Numeric(5, 2))
    hours_per_day: Mapped[Decimal] = Column(db.Numeric(4, 2))

    # Billing
    billable: Mapped[bool] = Column(db.Boolean, nullable=False, default=True)
    rate_type: Mapped[RateType] = Column(db.Enum(RateType), default=RateType.HOURLY)
    client_rate_amount: Mapped[Decimal] = Column(db.Numeric(12, 2))
    client_rate_currency: Mapped[str] = Column(db.String(3))
    cost_rate_amount: Mapped[Decimal] = Column(db.Numeric(12, 2))
    cost_rate_currency: Mapped[str] = Column(db.String(3))
    budget_allocated: Mapped[Decimal] = Column(db.Numeric(14, 2))
    budget_spent: Mapped[Decimal] = Column(db.Numeric(14, 2), nullable=False, default=ZERO)
    budget_remaining: Mapped[Decimal] = Column(db.Numeric(14, 2))
    budget_currency: Mapped[str] = Column(db.String(3))
    expenses_limit: Mapped[Decimal] = Column(db.Numeric(12, 2))
    expenses_spent: Mapped[Decimal] = Column(db.Numeric(12, 2), nullable=False, default=ZERO)

    # Time tracking
    total_hours_logged: Mapped[Decimal] = Column(db.Numeric(10, 2), nullable=False, default=ZERO)
    billable_hours_logged: Mapped[Decimal] = Column(db.Numeric(10, 2), nullable=False, default=ZERO)
    non_billable_hours_logged: Mapped[Decimal] = Column(db.Numeric(10, 2), nullable=False, default=ZERO)
    estimated_hours: Mapped[Decimal] = Column(db.Numeric(10, 2))
    remaining_hours: Mapped[Decimal] = Column(db.Numeric(10, 2))
    variance_hours: Mapped[Decimal] = Column(db.Numeric(10, 2))
    last_time_entry: Mapped[date] = Column(db.Date)

    # Client satisfaction
    client_rating: Mapped[int] = Column(db.Integer)
    client_feedback: Mapped[str] = Column(db.Text)
    rated_at: Mapped[datetime] = Column(db.DateTime)
    rated_by: Mapped[int] = Column(db.Integer)

    # Approval
    approval_required: Mapped[bool] = Column(db.Boolean, nullable=False, default=False)
    current_approval_level: Mapped[int] = Column(db.Integer)
    final_approved: Mapped[bool] = Column(db.Boolean, nullable=False, default=False)
    final_approved_by: Mapped[int] = Column(db.Integer)
    final_approved_at: Mapped[datetime] = Column(db.DateTime)
    rejection_reason: Mapped[str] = Column(db.String)

    _status: Mapped[AssignmentStatus] = Column("status", db.Enum(AssignmentStatus), nullable=False)

    # Soft delete
    is_deleted: Mapped[bool] = Column(db.Boolean, nullable=False, default=False)
    deleted_at: Mapped[datetime] = Column(db.DateTime)
    deleted_by: Mapped[int] = Column(db.Integer)

    # Metadata
    source: Mapped[AssignmentSource] = Column(db.Enum(AssignmentSource), default=AssignmentSource.MANUAL)
    staffing_request_id: Mapped[int] = Column(db.Integer)
    previous_assignment_id: Mapped[int] = Column(db.Integer, db.ForeignKey("assignment.id"))
    tags: Mapped[list[str]] = Column(db.JSON, default=list)

    status_history: Mapped[list["AssignmentStatusHistory"]] = db.relationship(
        "AssignmentStatusHistory", order_by="AssignmentStatusHistory.id", cascade="all, delete-orphan")
    approval_levels: Mapped[list["AssignmentApprovalLevel"]] = db.relationship(
        "AssignmentApprovalLevel", order_by="AssignmentApprovalLevel.level", cascade="all, delete-orphan")
    extensions: Mapped[list["AssignmentExtension"]] = db.relationship(
        "AssignmentExtension", order_by="AssignmentExtension.id", cascade="all, delete-orphan")
    milestones: Mapped[list["AssignmentMilestone"]] = db.relationship(
        "AssignmentMilestone", order_by="AssignmentMilestone.id", cascade="all, delete-orphan")
    notes: Mapped[list["AssignmentNote"]] = db.relationship(
        "AssignmentNote", order_by="AssignmentNote.id", cascade="all, delete-orphan")
    documents: Mapped[list["AssignmentDocument"]] = db.relationship(
        "AssignmentDocument", order_by="AssignmentDocument.id", cascade="all, delete-orphan")

    __mapper_args__ = {"version_id_col": version}

    @hybrid_property
    def status(self) -> AssignmentStatus:
        return self._status

    @validates('code', 'tenant_id', 'organization_id')
    def _validate_identity(self, key, value):
        current = getattr(self, key)
        if current is not None and current != value:
            raise ValidationError(f'{key} may not be changed once set.', key)
        if key == 'code' and not CODE_PATTERN.match(value or ''):
            raise ValidationError('Invalid assignment code.', key)
        return value

    @validates('allocation_percentage')
    def _validate_allocation(self, key, value):
        if value is not None and not 0 <= value <= 100:
            raise ValidationError('Allocation must be between 0 and 100.', key)
        return value

    @validates('hours_per_week', 'hours_per_day')
    def _validate_hours(self, key, value):
        limit = 80 if key == 'hours_per_week' else 24
        if value is not None and not 0 <= value <= limit:
            raise ValidationError(f'Must be between 0 and {limit}.', key)
        return value

    @validates('client_rate_amount', 'cost_rate_amount')
    def _validate_rate(self, key, value):
        if value is not None and value < 0:
            raise ValidationError('Rate must be zero or greater.', key)
        return value

    # Derived values

    @property
    def history(self) -> list["AssignmentStatusHistory"]:
        """Status history, newest first."""
        return list(reversed(self.status_history))

    @property
    def duration_days(self) -> int | None:
        start = self.actual_start or self.proposed_start
        end = self.actual_end or self.proposed_end
        if start is None or end is None:
            return None
        return (end - start).days

    @property
    def is_overdue(self) -> bool:
        return bool(
            self.status == AssignmentStatus.ACTIVE
            and self.proposed_end
            and self.proposed_end < utcnow().date())

    @property
    def utilization_percentage(self) -> Decimal:
        if not self.estimated_hours:
            return ZERO
        return (Decimal(self.total_hours_logged or 0) / self.estimated_hours * 100).quantize(CENTS, ROUND_HALF_UP)

    @property
    def budget_utilization(self) -> Decimal:
        if not self.budget_allocated:
            return ZERO
        return (Decimal(self.budget_spent or 0) / self.budget_allocated * 100).quantize(CENTS, ROUND_HALF_UP)

    @property
    def effective_rate(self) -> Decimal:
        if not self.total_hours_logged:
            return ZERO
        return (Decimal(self.budget_spent or 0) / self.total_hours_logged).quantize(CENTS, ROUND_HALF_UP)

    def recompute_derived(self):
        self.budget_remaining = Decimal(self.budget_allocated or 0) - Decimal(self.budget_spent or 0)
        remaining = Decimal(self.estimated_hours or 0) - Decimal(self.total_hours_logged or 0)
        self.remaining_hours = remaining
        self.variance_hours = remaining

    def touch(self, user_id: int | None):
        if user_id is not None:
            self.modified_uid = user_id
        self.modified_date = utcnow()

    # Consistency checks shared by creation and updates

    def check_timeline(self):
        if self.proposed_start and self.proposed_end and self.proposed_end <= self.proposed_start:
            raise ValidationError('End date must be after start date.', 'proposed_end')

    def check_currency(self):
        assert_same_currency(
            self.client_rate_currency if self.client_rate_amount is not None else None,
            self.cost_rate_currency if self.cost_rate_amount is not None else None,
            self.budget_currency,
        )

    # Status workflow

    def transition(self, to: AssignmentStatus, user_id: int | None, reason: str | None = None):
        current = self._status
        if to not in TRANSITIONS[current]:
            raise TransitionNotAllowed(f"Cannot move assignment from {current or 'new'} to {to}.")

        self._status = to
        self.status_history.append(AssignmentStatusHistory(
            previous_status=current,
            status=to,
            changed_at=utcnow(),
            changed_by=user_id,
            reason=reason or 'Status change',
        ))
        self.touch(user_id)
        logger.info("Assignment %s moved from %s to %s", self.code, current, to)

    def _record_final_approval(self, user_id: int | None):
        self.final_approved = True
        self.final_approved_by = user_id
        self.final_approved_at = utcnow()

    def submit_for_approval(self, user_id: int | None):
        if self.approval_levels:
            self.current_approval_level = self.approval_levels[0].level
            self.transition(AssignmentStatus.PENDING_APPROVAL, user_id, 'Submitted for approval')
        else:
            self.transition(AssignmentStatus.CONFIRMED, user_id, 'Approval not required')
            self._record_final_approval(user_id)

    def activate(self, user_id: int | None):
        self.transition(AssignmentStatus.ACTIVE, user_id, 'Assignment started')
        if self.actual_start is None:
            self.actual_start = utcnow().date()

    def complete(self, user_id: int | None, rating: int | None = None, feedback: str | None = None):
        self.transition(AssignmentStatus.COMPLETED, user_id, 'Assignment completed')
        self.actual_end = utcnow().date()
        if rating is not None:
            self.client_rating = rating
            self.client_feedback = feedback
            self.rated_at = utcnow()
            self.rated_by = user_id

    def hold(self, user_id: int | None, reason: str | None = None):
        self.transition(AssignmentStatus.ON_HOLD, user_id, reason or 'Assignment put on hold')

    def resume(self, user_id: int | None, notes: str | None = None):
        if self.status != AssignmentStatus.ON_HOLD:
            raise TransitionNotAllowed(f"Only assignments on hold can be resumed, this one is {self.status}.")
        self.transition(AssignmentStatus.ACTIVE, user_id, notes or 'Assignment resumed')

    def cancel(self, user_id: int | None, reason: str):
        if not (reason or '').strip():
            raise ValidationError('Reason is required upon cancellation.', 'reason')
        self.transition(AssignmentStatus.CANCELLED, user_id, reason)

    def terminate(self, user_id: int | None, reason: str | None = None):
        self.transition(AssignmentStatus.TERMINATED, user_id, reason or 'Assignment terminated')
        if self.actual_end is None:
            self.actual_end = utcnow().date()

    # Approval chain

    def _require_pending_approval(self):
        if self.status != AssignmentStatus.PENDING_APPROVAL:
            raise InvalidAssignmentState(f"Assignment is {self.status}, not awaiting approval.")

    def approval_level(self, level: int) -> "AssignmentApprovalLevel":
        for approval_level in self.approval_levels:
            if approval_level.level == level:
                return approval_level
        raise ValidationError('Invalid approval level.', 'level')

    def approve(self, approver_id: int, level: int, comments: str | None = None):
        self._require_pending_approval()
        approval_level = self.approval_level(level)
        if level != self.current_approval_level:
            raise ValidationError(
                f'Level {level} cannot be decided before level {self.current_approval_level}.', 'level')

        approval_level.status = ApprovalStatus.APPROVED
        approval_level.decided_by = approver_id
        approval_level.decided_at = utcnow()
        approval_level.comments = comments

        if all(al.status == ApprovalStatus.APPROVED for al in self.approval_levels):
            self._record_final_approval(approver_id)
            self.transition(AssignmentStatus.CONFIRMED, approver_id, 'Assignment approved')
        else:
            self.current_approval_level = level + 1
            self.touch(approver_id)

    def reject(self, rejector_id: int, level: int, reason: str, force: bool = False):
        self._require_pending_approval()
        if not (reason or '').strip():
            raise ValidationError('Reason is required upon rejection.', 'reason')
        approval_level = self.approval_level(level)
        if level != self.current_approval_level:
            if not force:
                raise ValidationError(
                    f'Level {level} cannot be decided before level {self.current_approval_level}.', 'level')
            logger.warning(
                "Forced rejection of assignment %s at level %s while level %s is current (user %s)",
                self.code, level, self.current_approval_level, rejector_id)

        approval_level.status = ApprovalStatus.REJECTED
        approval_level.decided_by = rejector_id
        approval_level.decided_at = utcnow()
        approval_level.comments = reason
        self.rejection_reason = reason
        self.transition(AssignmentStatus.CANCELLED, rejector_id, f'Rejected: {reason}')

    # Time and budget

    def log_time(self, hours, billable: bool = True, entry_date: date | None = None, user_id: int | None = None):
        hours = Decimal(str(hours))
        if hours <= 0:
            raise ValidationError('Hours must be greater than zero.', 'hours')
        if self.status != AssignmentStatus.ACTIVE:
            raise InvalidAssignmentState(f"Time can only be logged on active assignments, this one is {self.status}.")

        if billable and self.client_rate_amount is not None:
            assert_same_currency(self.client_rate_currency, self.budget_currency)
            self.budget_spent = Decimal(self.budget_spent or 0) + hours * Decimal(str(self.client_rate_amount))

        self.total_hours_logged = Decimal(self.total_hours_logged or 0) + hours
        if billable:
            self.billable_hours_logged = Decimal(self.billable_hours_logged or 0) + hours
        else:
            self.non_billable_hours_logged = Decimal(self.non_billable_hours_logged or 0) + hours
        self.last_time_entry = entry_date or utcnow().date()
        self.touch(user_id)

    # Extensions

    def extend(self, new_end_date: date, reason: str, requester_id: int | None) -> "AssignmentExtension":
        if self.status in TERMINAL_STATUSES:
            raise InvalidAssignmentState(f"Assignment is {self.status} and cannot be extended.")
        if not (reason or '').strip():
            raise ValidationError('Reason is required for an extension.', 'reason')
        start = self.actual_start or self.proposed_start
        if start and new_end_date <= start:
            raise ValidationError('End date must be after start date.', 'new_end_date')

        extension = AssignmentExtension(
            original_end_date=self.proposed_end or self.actual_end,
            new_end_date=new_end_date,
            reason=reason,
            requested_by=requester_id,
            requested_at=utcnow(),
            status=ExtensionStatus.PENDING,
        )
        self.extensions.append(extension)
        self.proposed_end = new_end_date
        self.touch(requester_id)
        return extension

    def decide_extension(self, extension_id: int, approver_id: int, approved: bool) -> "AssignmentExtension":
        extension = next((ext for ext in self.extensions if ext.id == extension_id), None)
        if extension is None:
            raise RecordNotFound()
        if extension.status != ExtensionStatus.PENDING:
            raise InvalidAssignmentState("Extension decision cannot be modified.")

        extension.status = ExtensionStatus.APPROVED if approved else ExtensionStatus.REJECTED
        extension.approved_by = approver_id
        extension.approved_at = utcnow()
        self.touch(approver_id)
        return extension

    # Notes, documents, milestones

    def add_note(self, content: str, user_id: int | None, type: NoteType = NoteType.GENERAL,
                 priority: NotePriority = NotePriority.NORMAL,
                 visibility: NoteVisibility = NoteVisibility.INTERNAL) -> "AssignmentNote":
        note = AssignmentNote(
            note_code=f"NOTE-{int(time.time() * 1000)}",
            type=type,
            content=content,
            priority=priority,
            visibility=visibility,
            created_by=user_id,
            created_at=utcnow(),
        )
        self.notes.append(note)
        self.touch(user_id)
        return note

    def add_document(self, name: str, user_id: int | None, type: DocumentType = DocumentType.OTHER,
                     url: str | None = None, description: str | None = None) -> "AssignmentDocument":
        previous_versions = [doc.version for doc in self.documents if doc.name == name]
        document = AssignmentDocument(
            name=name,
            type=type,
            url=url,
            description=description,
            uploaded_by=user_id,
            uploaded_at=utcnow(),
            version=max(previous_versions, default=0) + 1,
        )
        self.documents.append(document)
        self.touch(user_id)
        return document

    def add_milestone(self, name: str, user_id: int | None, description: str | None = None,
                      target_date: date | None = None,
                      status: MilestoneStatus = MilestoneStatus.PENDING) -> "AssignmentMilestone":
        milestone = AssignmentMilestone(
            name=name,
            description=description,
            target_date=target_date,
            status=status,
        )
        self.milestones.append(milestone)
        self.touch(user_id)
        return milestone

    def update_milestone(self, milestone_id: int, status: MilestoneStatus, user_id: int | None,
                         actual_date: date | None = None) -> "AssignmentMilestone":
        milestone = next((ms for ms in self.milestones if ms.id == milestone_id), None)
        if milestone is None:
            raise RecordNotFound()
        milestone.status = status
        if actual_date:
            milestone.actual_date = actual_date
        elif status == MilestoneStatus.COMPLETED and milestone.actual_date is None:
            milestone.actual_date = utcnow().date()
        self.touch(user_id)
        return milestone

    # Editing

    def update(self, data: dict, user_id: int | None = None):
        allowed = EDITABLE_FIELDS_BY_STATUS.get(self.status, frozenset())
        if not allowed:
            raise InvalidAssignmentState(f"Assignment is {self.status} and can no longer be edited.")

        rejected = sorted(set(data) - allowed)
        if rejected:
            raise ValidationError({
                name: [f'Field may not be changed while assignment is {self.status}.']
                for name in rejected
            })

        for name, value in data.items():
            setattr(self, name, value)

        if 'allocation_percentage' in data and 'hours_per_week' not in data:
            self.hours_per_week = weekly_hours(self.allocation_percentage)

        self.check_timeline()
        self.check_currency()
        self.touch(user_id)

    def delete(self, user_id: int | None):
        self.is_deleted = True
        self.deleted_at = utcnow()
        self.deleted_by = user_id
        self.touch(user_id)


@event.listens_for(Assignment, 'before_insert')
@event.listens_for(Assignment, 'before_update')
def _recompute_derived(mapper, connection, target: Assignment):
    target.recompute_derived()
