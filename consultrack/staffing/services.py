from datetime import date
from decimal import Decimal
from typing import Callable

from flask import current_app
from marshmallow import ValidationError
from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError
from werkzeug.exceptions import HTTPException

from ..config import StaffingSettings
from ..extensions import db
from ..logger import make_logger
from . import reports
from .errors import (
    ApproverMismatch, AssignmentNotFound, DuplicateAssignment, VersionConflict,
)
from .models import (
    ALLOCATED_STATUSES, ZERO, Assignment, AssignmentApprovalLevel,
    AssignmentSource, AssignmentStatus, ApprovalStatus, Client, Consultant,
    Organization, Project, generate_assignment_code, weekly_hours,
)

logger = make_logger('consultrack.staffing')

# Allocation above this percentage always needs sign-off
APPROVAL_ALLOCATION_THRESHOLD = Decimal('80')
DEFAULT_APPROVER = {'approver_id': None, 'role': 'manager'}

ROLLOVER_FIELDS = (
    'consultant_id',
    'client_id',
    'project_id',
    'engagement_id',
    'role',
    'role_level',
    'work_location',
    'allocation_percentage',
    'billable',
    'rate_type',
    'client_rate_amount',
    'client_rate_currency',
    'cost_rate_amount',
    'cost_rate_currency',
    'budget_currency',
)


def crossed_thresholds(thresholds, before: Decimal, after: Decimal) -> list[int]:
    """Budget alert thresholds passed when utilization moved from `before` to `after`."""
    return [threshold for threshold in thresholds if before < threshold <= after]


class AssignmentService:
    """
    Persistence side of the assignment lifecycle.

    Mutations are read-modify-write cycles guarded by the assignment's
    `version`. A stale write is rolled back and replayed against a fresh
    read, up to `version_conflict_retries` times.
    """

    def __init__(self, session: Session, settings: StaffingSettings):
        self.session = session
        self.settings = settings

    # Lookups

    def get(self, tenant_id: int, ident: int | str) -> Assignment:
        query = select(Assignment).filter(
            Assignment.tenant_id == tenant_id,
            Assignment.is_deleted.is_(False),
        )
        ident = str(ident)
        if ident.isascii() and ident.isdigit():
            query = query.filter(Assignment.id == int(ident))
        else:
            query = query.filter(Assignment.code == ident.upper())

        assignment = self.session.execute(query).scalar_one_or_none()
        if assignment is None:
            raise AssignmentNotFound()
        return assignment

    def _tenant_record(self, model, tenant_id: int, pk: int, field_name: str):
        record = self.session.get(model, pk)
        if record is None or record.tenant_id != tenant_id:
            raise ValidationError(f'Unknown {model.__name__.lower()}.', field_name)
        return record

    # Creation

    def create(self, tenant_id: int, data: dict, user_id: int | None) -> Assignment:
        data = {key: value for key, value in data.items() if value is not None}
        approvers = data.pop('approval_levels', [])
        milestones = data.pop('milestones', [])

        if previous_ident := data.get('previous_assignment_id'):
            previous = self.get(tenant_id, previous_ident)
            data['previous_assignment_id'] = previous.id
            for name in ROLLOVER_FIELDS:
                if data.get(name) is None and getattr(previous, name) is not None:
                    data[name] = getattr(previous, name)
            data.setdefault('source', AssignmentSource.ROLLOVER)

        missing = [name for name in ('consultant_id', 'client_id', 'role', 'proposed_start', 'proposed_end')
                   if data.get(name) is None]
        if missing:
            raise ValidationError({name: ['Missing data for required field.'] for name in missing})

        consultant = self._tenant_record(Consultant, tenant_id, data['consultant_id'], 'consultant_id')
        self._tenant_record(Client, tenant_id, data['client_id'], 'client_id')
        if data.get('project_id'):
            self._tenant_record(Project, tenant_id, data['project_id'], 'project_id')
        if data.get('organization_id'):
            self._tenant_record(Organization, tenant_id, data['organization_id'], 'organization_id')

        self._apply_defaults(data)
        organization_id = data.pop('organization_id', None) or consultant.organization_id
        assignment = Assignment(
            code=generate_assignment_code(),
            tenant_id=tenant_id,
            organization_id=organization_id,
            created_uid=user_id,
            modified_uid=user_id,
            **data,
        )
        assignment.check_timeline()
        assignment.check_currency()

        self._check_duplicate(assignment)
        self._check_allocation(assignment)

        if approvers or self.requires_approval(assignment):
            assignment.approval_required = True
            for level, approver in enumerate(approvers or [DEFAULT_APPROVER], start=1):
                assignment.approval_levels.append(AssignmentApprovalLevel(
                    level=level,
                    approver_id=approver.get('approver_id'),
                    role=approver.get('role'),
                    status=ApprovalStatus.PENDING,
                ))

        for milestone in milestones:
            assignment.add_milestone(user_id=user_id, **milestone)

        assignment.transition(AssignmentStatus.PROPOSED, user_id, 'Assignment created')

        self.session.add(assignment)
        try:
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info("Created assignment %s for consultant %s (tenant %s)",
                    assignment.code, assignment.consultant_id, tenant_id)
        return assignment

    def bulk_create(self, tenant_id: int, items: list[dict], user_id: int | None) -> dict:
        """
        Create each item independently.

        Duplicates are reported under `skipped`, any other rejection under
        `failed`. Items that pass are committed one by one, so a failure
        never undoes an earlier success.
        """
        results = {'created': [], 'failed': [], 'skipped': []}
        for index, data in enumerate(items):
            outcome = {'index': index, 'consultant_id': data.get('consultant_id')}
            try:
                results['created'].append(self.create(tenant_id, data, user_id))
            except DuplicateAssignment as exc:
                results['skipped'].append({**outcome, 'error': exc.description})
            except ValidationError as exc:
                results['failed'].append({
                    **outcome, 'error': 'Invalid assignment data.', 'errors': exc.normalized_messages()})
            except HTTPException as exc:
                results['failed'].append({**outcome, 'error': exc.description})

        logger.info("Bulk create for tenant %s: %s created, %s failed, %s skipped", tenant_id,
                    len(results['created']), len(results['failed']), len(results['skipped']))
        return results

    def _apply_defaults(self, data: dict):
        data.setdefault('allocation_percentage', Decimal(self.settings.default_allocation_percentage))
        data.setdefault('hours_per_week', weekly_hours(data['allocation_percentage']))

        currency = data.get('budget_currency') or data.get('client_rate_currency') or self.settings.default_currency
        data.setdefault('budget_currency', currency)
        if data.get('client_rate_amount') is not None:
            data.setdefault('client_rate_currency', currency)
        if data.get('cost_rate_amount') is not None:
            data.setdefault('cost_rate_currency', currency)

    def requires_approval(self, assignment: Assignment) -> bool:
        rate = assignment.client_rate_amount
        if rate is not None and rate > self.settings.require_approval_above_rate:
            return True
        if assignment.allocation_percentage > APPROVAL_ALLOCATION_THRESHOLD:
            return True
        return (assignment.duration_days or 0) > self.settings.auto_approve_days

    def _check_duplicate(self, assignment: Assignment):
        scope = []
        if assignment.project_id is not None:
            scope.append(Assignment.project_id == assignment.project_id)
        if assignment.engagement_id is not None:
            scope.append(Assignment.engagement_id == assignment.engagement_id)
        if not scope:
            return

        query = select(Assignment).filter(
            Assignment.tenant_id == assignment.tenant_id,
            Assignment.consultant_id == assignment.consultant_id,
            Assignment.is_deleted.is_(False),
            Assignment.status.not_in([AssignmentStatus.CANCELLED, AssignmentStatus.TERMINATED]),
            or_(*scope),
        )
        if assignment.id is not None:
            query = query.filter(Assignment.id != assignment.id)

        existing = self.session.execute(query.limit(1)).scalars().first()
        if existing is not None:
            raise DuplicateAssignment(
                f"Consultant already has assignment {existing.code} for this project or engagement.")

    def _check_allocation(self, assignment: Assignment):
        query = select(Assignment).filter(
            Assignment.tenant_id == assignment.tenant_id,
            Assignment.consultant_id == assignment.consultant_id,
            Assignment.is_deleted.is_(False),
            Assignment.status.in_(ALLOCATED_STATUSES),
            Assignment.proposed_start <= assignment.proposed_end,
            Assignment.proposed_end >= assignment.proposed_start,
        )
        if assignment.id is not None:
            query = query.filter(Assignment.id != assignment.id)
        overlapping = self.session.execute(query).scalars().all()

        total = sum((Decimal(other.allocation_percentage) for other in overlapping), ZERO)
        total += Decimal(assignment.allocation_percentage)

        if total > self.settings.max_allocation_percentage and not self.settings.allow_overallocation:
            raise ValidationError(
                f'Consultant allocation would reach {total}%, above the maximum of '
                f'{self.settings.max_allocation_percentage}%.', 'allocation_percentage')
        if total > self.settings.utilization_warning_threshold:
            logger.warning("Consultant %s would be allocated at %s%% between %s and %s",
                           assignment.consultant_id, total, assignment.proposed_start, assignment.proposed_end)
        if len(overlapping) >= self.settings.max_concurrent_assignments:
            raise ValidationError(
                f'Consultant already has {len(overlapping)} concurrent assignments.', 'consultant_id')

    # Mutations

    def _mutate(self, tenant_id: int, ident: int | str, mutation: Callable[[Assignment], object],
                expected_version: int | None = None) -> Assignment:
        attempts = self.settings.version_conflict_retries + 1
        for attempt in range(1, attempts + 1):
            assignment = self.get(tenant_id, ident)
            if expected_version is not None and assignment.version != expected_version:
                raise VersionConflict(
                    f"Assignment is at version {assignment.version}, expected {expected_version}.")
            try:
                # Flushed once, by the commit
                with self.session.no_autoflush:
                    mutation(assignment)
                self.session.commit()
                return assignment
            except StaleDataError as exc:
                self.session.rollback()
                logger.info("Stale write on assignment %s (attempt %s of %s): %s", ident, attempt, attempts, exc)
            except Exception:
                self.session.rollback()
                raise

        logger.warning("Giving up on assignment %s after %s conflicting writes", ident, attempts)
        raise VersionConflict()

    def update(self, tenant_id: int, ident, patch: dict, user_id: int | None,
               expected_version: int | None = None) -> Assignment:
        def mutation(assignment: Assignment):
            assignment.update(patch, user_id)
            if patch.get('project_id') is not None:
                self._tenant_record(Project, tenant_id, patch['project_id'], 'project_id')
            if patch.keys() & {'project_id', 'engagement_id'}:
                self._check_duplicate(assignment)
            if patch.keys() & {'allocation_percentage', 'proposed_start', 'proposed_end'}:
                self._check_allocation(assignment)

        return self._mutate(tenant_id, ident, mutation, expected_version)

    def submit(self, tenant_id: int, ident, user_id: int | None, expected_version: int | None = None):
        return self._mutate(tenant_id, ident, lambda a: a.submit_for_approval(user_id), expected_version)

    def activate(self, tenant_id: int, ident, user_id: int | None, expected_version: int | None = None):
        return self._mutate(tenant_id, ident, lambda a: a.activate(user_id), expected_version)

    def complete(self, tenant_id: int, ident, user_id: int | None, rating: int | None = None,
                 feedback: str | None = None, expected_version: int | None = None):
        return self._mutate(tenant_id, ident, lambda a: a.complete(user_id, rating, feedback), expected_version)

    def hold(self, tenant_id: int, ident, user_id: int | None, reason: str | None = None,
             expected_version: int | None = None):
        return self._mutate(tenant_id, ident, lambda a: a.hold(user_id, reason), expected_version)

    def resume(self, tenant_id: int, ident, user_id: int | None, notes: str | None = None,
               expected_version: int | None = None):
        return self._mutate(tenant_id, ident, lambda a: a.resume(user_id, notes), expected_version)

    def cancel(self, tenant_id: int, ident, user_id: int | None, reason: str,
               expected_version: int | None = None):
        return self._mutate(tenant_id, ident, lambda a: a.cancel(user_id, reason), expected_version)

    def terminate(self, tenant_id: int, ident, user_id: int | None, reason: str | None = None,
                  expected_version: int | None = None):
        return self._mutate(tenant_id, ident, lambda a: a.terminate(user_id, reason), expected_version)

    @staticmethod
    def _check_approver(assignment: Assignment, level: int, user_id: int):
        approval_level = assignment.approval_level(level)
        if approval_level.approver_id is not None and approval_level.approver_id != user_id:
            raise ApproverMismatch()

    def approve(self, tenant_id: int, ident, approver_id: int, level: int, comments: str | None = None,
                expected_version: int | None = None):
        def mutation(assignment: Assignment):
            self._check_approver(assignment, level, approver_id)
            assignment.approve(approver_id, level, comments)

        return self._mutate(tenant_id, ident, mutation, expected_version)

    def reject(self, tenant_id: int, ident, rejector_id: int, level: int, reason: str, force: bool = False,
               expected_version: int | None = None):
        def mutation(assignment: Assignment):
            if not force:
                self._check_approver(assignment, level, rejector_id)
            assignment.reject(rejector_id, level, reason, force=force)

        return self._mutate(tenant_id, ident, mutation, expected_version)

    def extend(self, tenant_id: int, ident, new_end_date: date, reason: str, requester_id: int | None,
               expected_version: int | None = None):
        return self._mutate(
            tenant_id, ident, lambda a: a.extend(new_end_date, reason, requester_id), expected_version)

    def decide_extension(self, tenant_id: int, ident, extension_id: int, approver_id: int, approved: bool):
        return self._mutate(
            tenant_id, ident, lambda a: a.decide_extension(extension_id, approver_id, approved))

    def log_time(self, tenant_id: int, ident, hours, user_id: int | None, billable: bool | None = None,
                 entry_date: date | None = None, expected_version: int | None = None) -> Assignment:
        crossed = []

        def mutation(assignment: Assignment):
            before = assignment.budget_utilization
            assignment.log_time(
                hours,
                billable=assignment.billable if billable is None else billable,
                entry_date=entry_date,
                user_id=user_id)
            crossed[:] = crossed_thresholds(
                self.settings.budget_alert_thresholds, before, assignment.budget_utilization)

        assignment = self._mutate(tenant_id, ident, mutation, expected_version)
        for threshold in crossed:
            logger.warning("Assignment %s passed %s%% of its budget (%s%% used)",
                           assignment.code, threshold, assignment.budget_utilization)
        return assignment

    def add_note(self, tenant_id: int, ident, note: dict, user_id: int | None):
        return self._mutate(tenant_id, ident, lambda a: a.add_note(user_id=user_id, **note))

    def add_document(self, tenant_id: int, ident, document: dict, user_id: int | None):
        return self._mutate(tenant_id, ident, lambda a: a.add_document(user_id=user_id, **document))

    def add_milestone(self, tenant_id: int, ident, milestone: dict, user_id: int | None):
        return self._mutate(tenant_id, ident, lambda a: a.add_milestone(user_id=user_id, **milestone))

    def update_milestone(self, tenant_id: int, ident, milestone_id: int, user_id: int | None,
                         status, actual_date: date | None = None):
        return self._mutate(
            tenant_id, ident, lambda a: a.update_milestone(milestone_id, status, user_id, actual_date))

    def delete(self, tenant_id: int, ident, user_id: int | None):
        assignment = self._mutate(tenant_id, ident, lambda a: a.delete(user_id))
        logger.info("Deleted assignment %s (user %s)", assignment.code, user_id)
        return assignment

    # Queries

    def pending_approvals(self, tenant_id: int, approver_id: int | None = None, limit: int = 50):
        query = (
            select(Assignment)
            .filter(
                Assignment.tenant_id == tenant_id,
                Assignment.is_deleted.is_(False),
                Assignment.status == AssignmentStatus.PENDING_APPROVAL,
            )
            .order_by(Assignment.created_date, Assignment.id)
            .limit(limit)
        )
        if approver_id is not None:
            query = query.join(AssignmentApprovalLevel, and_(
                AssignmentApprovalLevel.assignment_id == Assignment.id,
                AssignmentApprovalLevel.level == Assignment.current_approval_level,
            )).filter(AssignmentApprovalLevel.approver_id == approver_id)
        return self.session.execute(query).scalars().all()

    def current_allocation(self, tenant_id: int, consultant_id: int) -> Decimal:
        return reports.current_allocation(self.session, tenant_id, consultant_id)

    def utilization_report(self, tenant_id: int, start: date, end: date, consultant_id: int | None = None):
        return reports.utilization_report(self.session, tenant_id, start, end, consultant_id)

    def revenue_report(self, tenant_id: int, start: date, end: date):
        return reports.revenue_report(self.session, tenant_id, start, end)

    def statistics(self, tenant_id: int) -> dict:
        return reports.assignment_statistics(self.session, tenant_id)

    def list(self, tenant_id: int, filters: dict | None = None, page: int = 1, page_size: int | None = None):
        filters = filters or {}
        query = select(Assignment).filter(
            Assignment.tenant_id == tenant_id,
            Assignment.is_deleted.is_(False),
        )
        for name in ('consultant_id', 'client_id', 'project_id'):
            if filters.get(name) is not None:
                query = query.filter(getattr(Assignment, name) == filters[name])
        if status := filters.get('status'):
            query = query.filter(Assignment.status == status)
        if filters.get('active'):
            query = query.filter(Assignment.status.in_(ALLOCATED_STATUSES))

        query = query.order_by(Assignment.proposed_start.desc(), Assignment.id.desc())
        page_size = min(page_size or self.settings.default_page_size, self.settings.max_page_size)
        return db.paginate(query, page=page, per_page=page_size, error_out=False)


def get_service() -> AssignmentService:
    return AssignmentService(db.session, current_app.extensions['staffing'])
