"""
Read-only aggregates over assignments.

Date windows use interval intersection: an assignment counts toward
[start, end] when it started on or before `end` and has not ended before
`start`. Assignments without an actual end are treated as ongoing.
"""
from datetime import date
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import and_, distinct, extract, func, select
from sqlalchemy.orm import Session

from ..auth.permissions import register_entity
from .models import (
    ALLOCATED_STATUSES, REPORTABLE_STATUSES, Assignment, Client, Consultant,
)

CENTS = Decimal('0.01')
ZERO = Decimal('0')
TOP_CLIENTS = 10


@register_entity
class Report:
    """Permission anchor for the reporting endpoints."""


def _decimal(value) -> Decimal:
    if value is None:
        return ZERO
    return Decimal(str(value))


def _average(value) -> Decimal | None:
    if value is None:
        return None
    return _decimal(value).quantize(CENTS, ROUND_HALF_UP)


def in_window(start: date, end: date):
    return and_(
        Assignment.actual_start <= end,
        func.coalesce(Assignment.actual_end, end) >= start,
    )


def _live(tenant_id: int):
    return and_(
        Assignment.tenant_id == tenant_id,
        Assignment.is_deleted.is_(False),
    )


def utilization_report(session: Session, tenant_id: int, start: date, end: date,
                       consultant_id: int | None = None) -> list[dict]:
    query = (
        select(
            Assignment.consultant_id,
            Consultant.code.label('consultant_code'),
            Consultant.first_name,
            Consultant.last_name,
            func.count(Assignment.id).label('total_assignments'),
            func.sum(Assignment.billable_hours_logged).label('billable_hours'),
            func.sum(Assignment.non_billable_hours_logged).label('non_billable_hours'),
            func.avg(Assignment.allocation_percentage).label('average_allocation'),
            func.avg(Assignment.client_rating).label('average_client_rating'),
            func.count(distinct(Assignment.client_id)).label('unique_clients'),
            func.count(distinct(Assignment.project_id)).label('unique_projects'),
        )
        .join(Consultant, Consultant.id == Assignment.consultant_id)
        .filter(
            _live(tenant_id),
            Assignment.status.in_(REPORTABLE_STATUSES),
            in_window(start, end),
        )
        .group_by(Assignment.consultant_id, Consultant.code, Consultant.first_name, Consultant.last_name)
        .order_by(Assignment.consultant_id)
    )
    if consultant_id is not None:
        query = query.filter(Assignment.consultant_id == consultant_id)

    report = []
    for row in session.execute(query):
        billable = _decimal(row.billable_hours)
        non_billable = _decimal(row.non_billable_hours)
        report.append({
            'consultant_id': row.consultant_id,
            'consultant_code': row.consultant_code,
            'consultant_name': f"{row.first_name} {row.last_name}",
            'total_assignments': row.total_assignments,
            'billable_hours': billable,
            'non_billable_hours': non_billable,
            'total_hours': billable + non_billable,
            'average_allocation': _average(row.average_allocation),
            'average_client_rating': _average(row.average_client_rating),
            'unique_clients': row.unique_clients,
            'unique_projects': row.unique_projects,
        })
    return report


def revenue_report(session: Session, tenant_id: int, start: date, end: date) -> list[dict]:
    year = extract('year', Assignment.actual_start)
    month = extract('month', Assignment.actual_start)
    query = (
        select(
            Assignment.client_id,
            Client.name.label('client_name'),
            year.label('year'),
            month.label('month'),
            Assignment.client_rate_currency.label('currency'),
            func.sum(Assignment.billable_hours_logged * Assignment.client_rate_amount).label('revenue'),
            func.sum(Assignment.billable_hours_logged * Assignment.cost_rate_amount).label('cost'),
            func.sum(Assignment.billable_hours_logged).label('hours'),
            func.count(Assignment.id).label('assignments'),
        )
        .join(Client, Client.id == Assignment.client_id)
        .filter(
            _live(tenant_id),
            Assignment.billable.is_(True),
            in_window(start, end),
        )
        .group_by(Assignment.client_id, Client.name, year, month, Assignment.client_rate_currency)
    )

    report = []
    for row in session.execute(query):
        revenue = _decimal(row.revenue)
        cost = _decimal(row.cost)
        margin = revenue - cost
        report.append({
            'client_id': row.client_id,
            'client_name': row.client_name,
            'year': int(row.year),
            'month': int(row.month),
            'currency': row.currency,
            'revenue': revenue,
            'cost': cost,
            'hours': _decimal(row.hours),
            'assignments': row.assignments,
            'margin': margin,
            'margin_percentage': (margin / revenue * 100).quantize(CENTS, ROUND_HALF_UP) if revenue else ZERO,
        })

    report.sort(key=lambda item: (item['year'], item['month'], item['revenue']), reverse=True)
    return report


def current_allocation(session: Session, tenant_id: int, consultant_id: int) -> Decimal:
    total = session.execute(
        select(func.sum(Assignment.allocation_percentage))
        .filter(
            _live(tenant_id),
            Assignment.consultant_id == consultant_id,
            Assignment.status.in_(ALLOCATED_STATUSES),
        )
    ).scalar()
    return _decimal(total)


def assignment_statistics(session: Session, tenant_id: int) -> dict:
    live = _live(tenant_id)

    by_status = {
        str(status): count
        for status, count in session.execute(
            select(Assignment.status, func.count(Assignment.id))
            .filter(live)
            .group_by(Assignment.status)
        )
    }
    by_role = {
        role: count
        for role, count in session.execute(
            select(Assignment.role, func.count(Assignment.id))
            .filter(live)
            .group_by(Assignment.role)
        )
    }
    assignment_count = func.count(Assignment.id).label('assignment_count')
    top_clients = [
        {'client_id': row.client_id, 'client_name': row.client_name, 'assignments': row.assignment_count}
        for row in session.execute(
            select(Assignment.client_id, Client.name.label('client_name'), assignment_count)
            .join(Client, Client.id == Assignment.client_id)
            .filter(live)
            .group_by(Assignment.client_id, Client.name)
            .order_by(assignment_count.desc(), Assignment.client_id)
            .limit(TOP_CLIENTS)
        )
    ]
    totals = session.execute(
        select(
            func.count(Assignment.id).label('total'),
            func.sum(Assignment.billable_hours_logged).label('billable_hours'),
            func.sum(Assignment.non_billable_hours_logged).label('non_billable_hours'),
            func.avg(Assignment.allocation_percentage).label('average_allocation'),
        ).filter(live)
    ).one()

    return {
        'total': totals.total,
        'by_status': by_status,
        'by_role': by_role,
        'top_clients': top_clients,
        'financials': {
            'billable_hours': _decimal(totals.billable_hours),
            'non_billable_hours': _decimal(totals.non_billable_hours),
            'average_allocation': _average(totals.average_allocation),
        },
    }
