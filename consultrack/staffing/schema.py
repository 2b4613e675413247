from enum import StrEnum, auto

import simplejson
from marshmallow import fields, validate, validates_schema, ValidationError

from . import models
from ..extensions import marshmallow as ma

CURRENCY = validate.Regexp(r'^[A-Z]{3}$', error='Currency must be a 3 letter ISO code.')
NON_NEGATIVE = validate.Range(min=0)
BULK_CREATE_LIMIT = 100


class ExtensionDecision(StrEnum):
    APPROVE = auto()
    REJECT = auto()


def _check_dates(data, start_key: str, end_key: str, allow_equal: bool = False):
    start, end = data.get(start_key), data.get(end_key)
    if start and end and (end < start or (end == start and not allow_equal)):
        raise ValidationError('End date must be after start date.', end_key)


class Pagination(ma.Schema):
    page = fields.Integer(load_default=1, validate=validate.Range(min=1))
    total_pages = fields.Integer(dump_only=True)
    total = fields.Integer(dump_only=True)
    page_size = fields.Integer(load_default=None, validate=validate.Range(min=1))


class AssignmentFilter(Pagination):
    consultant_id = fields.Integer()
    client_id = fields.Integer()
    project_id = fields.Integer()
    status = fields.Enum(models.AssignmentStatus, by_value=True)
    active = fields.Boolean()


class PendingApprovalsFilter(ma.Schema):
    approver_id = fields.Integer()
    limit = fields.Integer(load_default=50, validate=validate.Range(min=1, max=200))


class ReportQuery(ma.Schema):
    start_date = fields.Date(required=True)
    end_date = fields.Date(required=True)

    @validates_schema
    def validate_window(self, data, **kwargs):
        _check_dates(data, 'start_date', 'end_date', allow_equal=True)


class UtilizationQuery(ReportQuery):
    consultant_id = fields.Integer()


# Assignment sub-records

class StatusHistory(ma.Schema):
    status = fields.Enum(models.AssignmentStatus, by_value=True)
    previous_status = fields.Enum(models.AssignmentStatus, by_value=True, allow_none=True)
    changed_at = fields.DateTime()
    changed_by = fields.Integer(allow_none=True)
    reason = fields.String()


class ApprovalLevel(ma.Schema):
    level = fields.Integer(dump_only=True)
    approver_id = fields.Integer(allow_none=True)
    role = fields.String(allow_none=True)
    status = fields.Enum(models.ApprovalStatus, by_value=True, dump_only=True)
    decided_by = fields.Integer(dump_only=True)
    decided_at = fields.DateTime(dump_only=True)
    comments = fields.String(dump_only=True)


class Extension(ma.Schema):
    id = fields.Integer()
    original_end_date = fields.Date()
    new_end_date = fields.Date()
    reason = fields.String()
    requested_by = fields.Integer()
    requested_at = fields.DateTime()
    approved_by = fields.Integer()
    approved_at = fields.DateTime()
    status = fields.Enum(models.ExtensionStatus, by_value=True)


class Milestone(ma.Schema):
    id = fields.Integer(dump_only=True)
    name = fields.String(required=True, validate=validate.Length(min=1))
    description = fields.String()
    target_date = fields.Date()
    actual_date = fields.Date(dump_only=True)
    status = fields.Enum(models.MilestoneStatus, by_value=True)


class Note(ma.Schema):
    id = fields.Integer(dump_only=True)
    note_code = fields.String(dump_only=True)
    type = fields.Enum(models.NoteType, by_value=True)
    content = fields.String(required=True, validate=validate.Length(min=1))
    priority = fields.Enum(models.NotePriority, by_value=True)
    visibility = fields.Enum(models.NoteVisibility, by_value=True)
    created_by = fields.Integer(dump_only=True)
    created_at = fields.DateTime(dump_only=True)


class Document(ma.Schema):
    id = fields.Integer(dump_only=True)
    name = fields.String(required=True, validate=validate.Length(min=1))
    type = fields.Enum(models.DocumentType, by_value=True)
    url = fields.Url()
    description = fields.String()
    uploaded_by = fields.Integer(dump_only=True)
    uploaded_at = fields.DateTime(dump_only=True)
    version = fields.Integer(dump_only=True)


class Assignment(ma.Schema):
    class Meta:
        render_module = simplejson

    id = fields.Integer()
    code = fields.String()
    version = fields.Integer()
    tenant_id = fields.Integer()
    organization_id = fields.Integer()

    consultant_id = fields.Integer()
    consultant_name = fields.String(attribute='consultant.full_name')
    client_id = fields.Integer()
    client_name = fields.String(attribute='client.name')
    project_id = fields.Integer()
    engagement_id = fields.Integer()

    title = fields.String()
    description = fields.String()
    role = fields.String()
    role_level = fields.Enum(models.RoleLevel, by_value=True)
    work_location = fields.Enum(models.WorkLocation, by_value=True)

    proposed_start = fields.Date()
    proposed_end = fields.Date()
    actual_start = fields.Date()
    actual_end = fields.Date()
    duration_days = fields.Integer()
    is_overdue = fields.Boolean()

    allocation_percentage = fields.Decimal()
    hours_per_week = fields.Decimal()
    hours_per_day = fields.Decimal()

    billable = fields.Boolean()
    rate_type = fields.Enum(models.RateType, by_value=True)
    client_rate_amount = fields.Decimal()
    client_rate_currency = fields.String()
    cost_rate_amount = fields.Decimal()
    cost_rate_currency = fields.String()
    budget_allocated = fields.Decimal()
    budget_spent = fields.Decimal()
    budget_remaining = fields.Decimal()
    budget_currency = fields.String()
    budget_utilization = fields.Decimal()
    effective_rate = fields.Decimal()
    expenses_limit = fields.Decimal()
    expenses_spent = fields.Decimal()

    total_hours_logged = fields.Decimal()
    billable_hours_logged = fields.Decimal()
    non_billable_hours_logged = fields.Decimal()
    estimated_hours = fields.Decimal()
    remaining_hours = fields.Decimal()
    variance_hours = fields.Decimal()
    utilization_percentage = fields.Decimal()
    last_time_entry = fields.Date()

    client_rating = fields.Integer()
    client_feedback = fields.String()
    rated_at = fields.DateTime()
    rated_by = fields.Integer()

    status = fields.Enum(models.AssignmentStatus, by_value=True)
    status_history = fields.List(fields.Nested(StatusHistory()), attribute='history')

    approval_required = fields.Boolean()
    approval_levels = fields.List(fields.Nested(ApprovalLevel()))
    current_approval_level = fields.Integer()
    final_approved = fields.Boolean()
    final_approved_by = fields.Integer()
    final_approved_at = fields.DateTime()
    rejection_reason = fields.String()

    extensions = fields.List(fields.Nested(Extension()))
    milestones = fields.List(fields.Nested(Milestone()))
    notes = fields.List(fields.Nested(Note()))
    documents = fields.List(fields.Nested(Document()))

    source = fields.Enum(models.AssignmentSource, by_value=True)
    staffing_request_id = fields.Integer()
    previous_assignment_id = fields.Integer()
    tags = fields.List(fields.String())

    created_uid = fields.Integer()
    created_date = fields.DateTime()
    modified_uid = fields.Integer()
    modified_date = fields.DateTime()


# Requests

class AssignmentFields(ma.Schema):
    """Fields a caller may set on an assignment, shared by create and patch."""
    project_id = fields.Integer()
    engagement_id = fields.Integer()

    title = fields.String()
    description = fields.String()
    role = fields.String(validate=validate.Length(min=1))
    role_level = fields.Enum(models.RoleLevel, by_value=True)
    work_location = fields.Enum(models.WorkLocation, by_value=True)

    proposed_start = fields.Date()
    proposed_end = fields.Date()

    allocation_percentage = fields.Decimal(validate=validate.Range(min=0, max=100))
    hours_per_week = fields.Decimal(validate=validate.Range(min=0, max=80))
    hours_per_day = fields.Decimal(validate=validate.Range(min=0, max=24))

    billable = fields.Boolean()
    rate_type = fields.Enum(models.RateType, by_value=True)
    client_rate_amount = fields.Decimal(validate=NON_NEGATIVE)
    client_rate_currency = fields.String(validate=CURRENCY)
    cost_rate_amount = fields.Decimal(validate=NON_NEGATIVE)
    cost_rate_currency = fields.String(validate=CURRENCY)
    budget_allocated = fields.Decimal(validate=NON_NEGATIVE)
    budget_currency = fields.String(validate=CURRENCY)
    expenses_limit = fields.Decimal(validate=NON_NEGATIVE)
    estimated_hours = fields.Decimal(validate=NON_NEGATIVE)
    tags = fields.List(fields.String())

    @validates_schema
    def validate_timeline(self, data, **kwargs):
        _check_dates(data, 'proposed_start', 'proposed_end')


class CreateAssignmentRequest(AssignmentFields):
    consultant_id = fields.Integer()
    client_id = fields.Integer()
    organization_id = fields.Integer()
    proposed_start = fields.Date(required=True)
    proposed_end = fields.Date(required=True)

    approval_levels = fields.List(fields.Nested(ApprovalLevel()))
    milestones = fields.List(fields.Nested(Milestone()))

    source = fields.Enum(models.AssignmentSource, by_value=True)
    staffing_request_id = fields.Integer()
    previous_assignment_id = fields.Integer()

    @validates_schema
    def validate_required_links(self, data, **kwargs):
        # A rollover inherits these from the previous assignment
        if data.get('previous_assignment_id'):
            return
        missing = [name for name in ('consultant_id', 'client_id', 'role') if data.get(name) is None]
        if missing:
            raise ValidationError({name: ['Missing data for required field.'] for name in missing})


class BulkCreateRequest(ma.Schema):
    assignments = fields.List(
        fields.Nested(CreateAssignmentRequest()), required=True,
        validate=validate.Length(min=1, max=BULK_CREATE_LIMIT))


class VersionedRequest(ma.Schema):
    version = fields.Integer(validate=validate.Range(min=1))


class AssignmentPatch(AssignmentFields, VersionedRequest):
    expenses_spent = fields.Decimal(validate=NON_NEGATIVE)


class StatusChangeRequest(VersionedRequest):
    reason = fields.String()


class CancelRequest(VersionedRequest):
    reason = fields.String(required=True, validate=validate.Length(min=1))


class ClientSatisfaction(ma.Schema):
    rating = fields.Integer(required=True, validate=validate.Range(min=1, max=5))
    feedback = fields.String()


class CompleteRequest(VersionedRequest):
    client_satisfaction = fields.Nested(ClientSatisfaction())


class ApproveRequest(VersionedRequest):
    level = fields.Integer(required=True, validate=validate.Range(min=1))
    comments = fields.String()


class RejectRequest(VersionedRequest):
    level = fields.Integer(required=True, validate=validate.Range(min=1))
    reason = fields.String(required=True)
    force = fields.Boolean(load_default=False)

    @validates_schema
    def validate_reason(self, data, **kwargs):
        if not (data.get('reason') or '').strip():
            raise ValidationError('Reason is required upon rejection.', 'reason')


class ExtendRequest(VersionedRequest):
    new_end_date = fields.Date(required=True)
    reason = fields.String(required=True, validate=validate.Length(min=1))


class ExtensionDecisionRequest(ma.Schema):
    decision = fields.Enum(ExtensionDecision, by_value=True, required=True)


class TimeLogRequest(VersionedRequest):
    hours = fields.Decimal(required=True, validate=validate.Range(min=0, min_inclusive=False, max=24))
    billable = fields.Boolean()
    date = fields.Date()


class MilestoneUpdateRequest(ma.Schema):
    status = fields.Enum(models.MilestoneStatus, by_value=True, required=True)
    actual_date = fields.Date()


# Reports

class UtilizationRow(ma.Schema):
    class Meta:
        render_module = simplejson

    consultant_id = fields.Integer()
    consultant_code = fields.String()
    consultant_name = fields.String()
    total_assignments = fields.Integer()
    billable_hours = fields.Decimal()
    non_billable_hours = fields.Decimal()
    total_hours = fields.Decimal()
    average_allocation = fields.Decimal()
    average_client_rating = fields.Decimal()
    unique_clients = fields.Integer()
    unique_projects = fields.Integer()


class RevenueRow(ma.Schema):
    class Meta:
        render_module = simplejson

    client_id = fields.Integer()
    client_name = fields.String()
    year = fields.Integer()
    month = fields.Integer()
    currency = fields.String()
    revenue = fields.Decimal()
    cost = fields.Decimal()
    margin = fields.Decimal()
    margin_percentage = fields.Decimal()
    hours = fields.Decimal()
    assignments = fields.Integer()


class TopClient(ma.Schema):
    client_id = fields.Integer()
    client_name = fields.String()
    assignments = fields.Integer()


class Financials(ma.Schema):
    billable_hours = fields.Decimal()
    non_billable_hours = fields.Decimal()
    average_allocation = fields.Decimal()


class Statistics(ma.Schema):
    total = fields.Integer()
    by_status = fields.Dict(keys=fields.String(), values=fields.Integer())
    by_role = fields.Dict(keys=fields.String(), values=fields.Integer())
    top_clients = fields.List(fields.Nested(TopClient()))
    financials = fields.Nested(Financials())


class Allocation(ma.Schema):
    consultant_id = fields.Integer()
    allocation_percentage = fields.Decimal()
    available_percentage = fields.Decimal()
    over_allocated = fields.Boolean()


# Response envelopes

class SuccessResponse(ma.Schema):
    class Meta:
        render_module = simplejson

    success = fields.Boolean(dump_default=True)


class AssignmentResponse(SuccessResponse):
    data = fields.Nested(Assignment())


class BulkItemOutcome(ma.Schema):
    index = fields.Integer()
    consultant_id = fields.Integer()
    error = fields.String()
    errors = fields.Dict(keys=fields.String())


class BulkCreateResult(ma.Schema):
    created = fields.List(fields.Nested(Assignment()))
    failed = fields.List(fields.Nested(BulkItemOutcome()))
    skipped = fields.List(fields.Nested(BulkItemOutcome()))


class BulkCreateResponse(SuccessResponse):
    data = fields.Nested(BulkCreateResult())


class AssignmentPage(ma.Schema):
    pagination = fields.Nested(Pagination())
    items = fields.List(fields.Nested(Assignment()))


class ListAssignmentResponse(SuccessResponse):
    data = fields.Nested(AssignmentPage())


class PendingApprovalsResponse(SuccessResponse):
    data = fields.List(fields.Nested(Assignment()))


class UtilizationReportResponse(SuccessResponse):
    data = fields.List(fields.Nested(UtilizationRow()))


class RevenueReportResponse(SuccessResponse):
    data = fields.List(fields.Nested(RevenueRow()))


class StatisticsResponse(SuccessResponse):
    data = fields.Nested(Statistics())


class AllocationResponse(SuccessResponse):
    data = fields.Nested(Allocation())
