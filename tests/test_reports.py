from datetime import date
from decimal import Decimal

from sqlalchemy import select

from consultrack.staffing import reports
from consultrack.staffing.models import Assignment
from .conftest import APPROVER_ID, OTHER_TENANT_ID, TENANT_ID, USER_ID

JANUARY = (date(2024, 1, 1), date(2024, 1, 31))


def test_in_window(seed, make_active):
    january = make_active(actual_start=date(2024, 1, 10))
    make_active(actual_start=date(2024, 3, 1), client_id=2)

    matched = seed.session.execute(
        select(Assignment.id).filter(reports.in_window(*JANUARY))
    ).scalars().all()
    assert matched == [january.id]


def test_in_window_excludes_ended_before_start(seed, make_active):
    make_active(actual_start=date(2023, 12, 1), actual_end=date(2023, 12, 15))
    ongoing = make_active(actual_start=date(2023, 12, 25), client_id=2)

    matched = seed.session.execute(
        select(Assignment.id).filter(reports.in_window(*JANUARY))
    ).scalars().all()
    assert matched == [ongoing.id]


def test_utilization_report(service, make_active):
    first = make_active(actual_start=date(2024, 1, 2), allocation_percentage=Decimal('50'))
    second = make_active(actual_start=date(2024, 1, 15), allocation_percentage=Decimal('30'), client_id=2)
    make_active(actual_start=date(2024, 1, 5), consultant_id=2)
    service.log_time(TENANT_ID, first.id, 10, USER_ID)
    service.log_time(TENANT_ID, second.id, 4, USER_ID, billable=False)
    service.complete(TENANT_ID, second.id, APPROVER_ID, rating=4)

    report = service.utilization_report(TENANT_ID, *JANUARY)

    assert [row['consultant_id'] for row in report] == [1, 2]
    ada = report[0]
    assert (ada['consultant_code'], ada['consultant_name'], ada['total_assignments']) == (
        'CNS-001', 'Ada Lovelace', 2)
    assert (ada['billable_hours'], ada['non_billable_hours'], ada['total_hours']) == (10, 4, 14)
    assert (ada['average_allocation'], ada['average_client_rating']) == (Decimal('40.00'), Decimal('4.00'))
    assert (ada['unique_clients'], ada['unique_projects']) == (2, 0)

    assert service.utilization_report(TENANT_ID, *JANUARY, consultant_id=2)[0]['consultant_name'] == 'Grace Hopper'
    assert service.utilization_report(OTHER_TENANT_ID, *JANUARY) == []


def test_utilization_report_skips_unstarted(service, make_assignment):
    make_assignment(actual_start=date(2024, 1, 2))
    assert service.utilization_report(TENANT_ID, *JANUARY) == []


def test_revenue_report(service, make_active):
    acme = make_active(actual_start=date(2024, 1, 2), client_rate_amount=Decimal('100'),
                       cost_rate_amount=Decimal('60'))
    globex = make_active(actual_start=date(2024, 2, 1), client_id=2, client_rate_amount=Decimal('150'),
                         cost_rate_amount=Decimal('90'))
    internal = make_active(actual_start=date(2024, 1, 3), consultant_id=2, billable=False)
    service.log_time(TENANT_ID, acme.id, 10, USER_ID)
    service.log_time(TENANT_ID, globex.id, 4, USER_ID)
    service.log_time(TENANT_ID, internal.id, 8, USER_ID)

    report = service.revenue_report(TENANT_ID, date(2024, 1, 1), date(2024, 2, 29))

    assert [(row['client_name'], row['year'], row['month']) for row in report] == [
        ('Globex', 2024, 2),
        ('Acme Corp', 2024, 1),
    ]
    globex_row, acme_row = report
    assert (acme_row['revenue'], acme_row['cost'], acme_row['margin'], acme_row['margin_percentage']) == (
        Decimal('1000'), Decimal('600'), Decimal('400'), Decimal('40.00'))
    assert (acme_row['hours'], acme_row['assignments'], acme_row['currency']) == (10, 1, 'USD')
    assert (globex_row['revenue'], globex_row['margin']) == (Decimal('600'), Decimal('240'))


def test_revenue_report_zero_revenue(service, make_active):
    make_active(actual_start=date(2024, 1, 2))

    [row] = service.revenue_report(TENANT_ID, *JANUARY)
    assert (row['revenue'], row['margin'], row['margin_percentage']) == (0, 0, 0)


def test_current_allocation(service, make_assignment, make_active):
    make_active(allocation_percentage=Decimal('50'))
    confirmed = make_assignment(allocation_percentage=Decimal('30'), client_id=2)
    service.submit(TENANT_ID, confirmed.id, USER_ID)
    make_assignment(allocation_percentage=Decimal('20'), proposed_start=date(2024, 5, 1),
                    proposed_end=date(2024, 5, 20))

    assert service.current_allocation(TENANT_ID, 1) == Decimal('80')
    assert service.current_allocation(TENANT_ID, 2) == 0


def test_statistics(service, make_assignment, make_active):
    make_active(role='Architect')
    make_assignment(client_id=2)
    make_assignment(client_id=2, consultant_id=2)
    deleted = make_assignment(consultant_id=2)
    service.delete(TENANT_ID, deleted.id, USER_ID)

    stats = service.statistics(TENANT_ID)

    assert stats['total'] == 3
    assert stats['by_status'] == {'active': 1, 'proposed': 2}
    assert stats['by_role'] == {'Architect': 1, 'Data Engineer': 2}
    assert stats['top_clients'] == [
        {'client_id': 2, 'client_name': 'Globex', 'assignments': 2},
        {'client_id': 1, 'client_name': 'Acme Corp', 'assignments': 1},
    ]
    assert stats['financials']['average_allocation'] == Decimal('50.00')
