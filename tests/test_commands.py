import json
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

import pytest
import yaml
from sqlalchemy import func, select

from consultrack.staffing.models import Client, Consultant, Project, Tenant
from .conftest import TENANT_ID, USER_ID, params

expected_seed_log = (
    'INSERT new Tenant(name=Demo Consulting)\n'
    'INSERT new Client(code=ACME)\n'
    'INSERT new Client(code=GLOBEX)\n'
    'INSERT new Client(code=INITECH)\n'
    'model Client: 3 inserts, 0 updates\n'
    'INSERT new Consultant(code=CNS-001)\n'
    'INSERT new Consultant(code=CNS-002)\n'
    'INSERT new Consultant(code=CNS-003)\n'
    'model Consultant: 3 inserts, 0 updates\n'
    'INSERT new Project(code=ACME-ERP)\n'
    'INSERT new Project(code=GLOBEX-DATA)\n'
    'model Project: 2 inserts, 0 updates\n'
)


def count(db, model, **filters) -> int:
    return db.session.execute(select(func.count()).select_from(model).filter_by(**filters)).scalar()


def test_seed_demo(runner, seed):
    res = runner.invoke(args=['staffing', 'seed-demo'])
    assert (res.exit_code, res.output) == (0, expected_seed_log + 'Demo data ready for tenant 3\n')

    tenant = seed.session.execute(select(Tenant).filter_by(name='Demo Consulting')).scalar_one()
    assert (count(seed, Client, tenant_id=tenant.id), count(seed, Consultant, tenant_id=tenant.id),
            count(seed, Project, tenant_id=tenant.id)) == (3, 3, 2)

    # second run is a no-op
    res = runner.invoke(args=['staffing', 'seed-demo'])
    assert res.output == (
        'model Client: 0 inserts, 0 updates\n'
        'model Consultant: 0 inserts, 0 updates\n'
        'model Project: 0 inserts, 0 updates\n'
        'Demo data ready for tenant 3\n'
    )


def test_seed_demo_dry_run(runner, seed):
    res = runner.invoke(args=['staffing', 'seed-demo', '--dry-run'])
    assert (res.exit_code, res.output) == (0, expected_seed_log)
    assert count(seed, Tenant) == 2
    assert count(seed, Client) == 3


@pytest.fixture
def billed(service, make_active):
    acme = make_active(actual_start=date(2024, 1, 2))
    globex = make_active(actual_start=date(2024, 1, 8), client_id=2, consultant_id=2,
                         client_rate_amount=Decimal('150'), cost_rate_amount=Decimal('75'))
    service.log_time(TENANT_ID, acme.id, 10, USER_ID)
    service.log_time(TENANT_ID, globex.id, 4, USER_ID)
    return acme, globex


def test_revenue_report_json(runner, billed):
    res = runner.invoke(args=['staffing', 'revenue-report', '--tenant', '1',
                              '--start', '2024-01-01', '--end', '2024-01-31', '--format', 'json'])
    assert res.exit_code == 0
    rows = json.loads(res.output)
    assert [(row['client_name'], row['revenue'], row['margin']) for row in rows] == [
        ('Acme Corp', 1000, 400),
        ('Globex', 600, 300),
    ]
    assert {(row['year'], row['month'], row['currency']) for row in rows} == {(2024, 1, 'USD')}


def test_utilization_report_yaml(runner, billed):
    res = runner.invoke(args=['staffing', 'utilization-report', '--tenant', '1',
                              '--start', '2024-01-01', '--end', '2024-01-31', '--consultant', '2'])
    assert res.exit_code == 0
    [row] = yaml.safe_load(res.output)
    assert (row['consultant_code'], row['consultant_name'], row['billable_hours'], row['total_hours']) == (
        'CNS-002', 'Grace Hopper', 4, 4)


@dataclass
class CliTC:
    args: list[str]
    exp_exit_code: int = 0
    exp_in_output: str | None = None


@pytest.mark.parametrize(*params({
    'end before start': CliTC(
        ['staffing', 'revenue-report', '--tenant', '1', '--start', '2024-02-01', '--end', '2024-01-01'],
        2, '--end must not be before --start'),
    'missing tenant': CliTC(
        ['staffing', 'utilization-report', '--start', '2024-01-01', '--end', '2024-01-31'],
        2, "Missing option '--tenant'"),
    'bad date': CliTC(
        ['staffing', 'revenue-report', '--tenant', '1', '--start', '01/02/2024', '--end', '2024-01-31'],
        2, "Invalid value for '--start'"),
    'empty window': CliTC(
        ['staffing', 'revenue-report', '--tenant', '1', '--start', '2030-01-01', '--end', '2030-01-31',
         '--format', 'json'],
        0, '[]'),
}))
def test_report_cli_arguments(runner, seed, args, exp_exit_code, exp_in_output):
    res = runner.invoke(args=args)
    assert res.exit_code == exp_exit_code
    assert exp_in_output in res.output
