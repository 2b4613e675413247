import os
import tempfile
from dataclasses import fields, astuple
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import jwt
import pytest

from consultrack import create_app
from consultrack.auth import tokens
from consultrack.config import Config
from consultrack.extensions import db
from consultrack.staffing.models import (
    Assignment, AssignmentStatus, Client, Consultant, Organization, Project,
    Tenant, generate_assignment_code,
)
from consultrack.staffing.services import AssignmentService

TENANT_ID = 1
OTHER_TENANT_ID = 2
USER_ID = 7
APPROVER_ID = 8


@pytest.fixture(scope='session')
def app():
    db_fd, db_path = tempfile.mkstemp()

    test_app = create_app(Config(
        TESTING=True,
        SQLALCHEMY_DATABASE_URI=f"sqlite:///{db_path}",
    ))

    yield test_app

    os.close(db_fd)
    os.unlink(db_path)


@pytest.fixture
def seed(app):
    """Fresh schema with two tenants worth of reference data."""
    with app.app_context():
        db.create_all()

        db.session.add_all([
            Tenant(id=TENANT_ID, name='Acme Consulting'),
            Tenant(id=OTHER_TENANT_ID, name='Other Consulting'),
        ])
        db.session.flush()
        db.session.add_all([
            Organization(id=1, tenant_id=TENANT_ID, name='Delivery'),
            Organization(id=2, tenant_id=OTHER_TENANT_ID, name='Delivery'),
        ])
        db.session.flush()
        db.session.add_all([
            Consultant(id=1, tenant_id=TENANT_ID, organization_id=1, code='CNS-001',
                       first_name='Ada', last_name='Lovelace', email='ada@example.com'),
            Consultant(id=2, tenant_id=TENANT_ID, organization_id=1, code='CNS-002',
                       first_name='Grace', last_name='Hopper', email='grace@example.com'),
            Consultant(id=3, tenant_id=OTHER_TENANT_ID, organization_id=2, code='CNS-001',
                       first_name='Alan', last_name='Turing', email='alan@example.com'),
            Client(id=1, tenant_id=TENANT_ID, code='ACME', name='Acme Corp'),
            Client(id=2, tenant_id=TENANT_ID, code='GLOBEX', name='Globex'),
            Client(id=3, tenant_id=OTHER_TENANT_ID, code='INITECH', name='Initech'),
        ])
        db.session.flush()
        db.session.add_all([
            Project(id=1, tenant_id=TENANT_ID, client_id=1, code='ACME-ERP', name='ERP Rollout'),
            Project(id=2, tenant_id=TENANT_ID, client_id=2, code='GLOBEX-DATA', name='Data Platform'),
        ])
        db.session.commit()

        yield db

        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


@pytest.fixture
def service(app, seed):
    return AssignmentService(db.session, app.extensions['staffing'])


def assignment_data(**overrides) -> dict:
    """Twenty day, half time assignment; needs no approval under default settings."""
    data = {
        'consultant_id': 1,
        'client_id': 1,
        'role': 'Data Engineer',
        'proposed_start': date(2024, 1, 1),
        'proposed_end': date(2024, 1, 21),
        'allocation_percentage': Decimal('50'),
        'client_rate_amount': Decimal('100'),
        'cost_rate_amount': Decimal('60'),
        'budget_allocated': Decimal('10000'),
        'estimated_hours': Decimal('100'),
    }
    data.update(overrides)
    return data


@pytest.fixture
def make_assignment(service):
    def _make(user_id: int = USER_ID, tenant_id: int = TENANT_ID, **overrides) -> Assignment:
        return service.create(tenant_id, assignment_data(**overrides), user_id)

    return _make


@pytest.fixture
def make_active(service, make_assignment):
    def _make(**overrides) -> Assignment:
        assignment = make_assignment(**overrides)
        service.submit(TENANT_ID, assignment.id, USER_ID)
        return service.activate(TENANT_ID, assignment.id, USER_ID)

    return _make


def build_assignment(**overrides) -> Assignment:
    """Unsaved assignment already in `proposed`."""
    data = {
        'code': generate_assignment_code(),
        'tenant_id': TENANT_ID,
        'consultant_id': 1,
        'client_id': 1,
        'role': 'Analyst',
        'proposed_start': date(2024, 1, 1),
        'proposed_end': date(2024, 3, 31),
        'allocation_percentage': Decimal('100'),
        'budget_currency': 'USD',
    }
    data.update(overrides)
    assignment = Assignment(**data)
    assignment.transition(AssignmentStatus.PROPOSED, USER_ID, 'Assignment created')
    return assignment


def params(test_cases) -> (str, list[tuple]):
    test_case_params = []
    param_keys = ''
    for key, value in test_cases.items():
        if not param_keys:
            param_keys = ','.join(f.name for f in fields(value))
        test_case_params.append(pytest.param(*astuple(value), id=key))
    return param_keys, test_case_params


def auth_headers(app, user_id: int = USER_ID, tenant_id: int = TENANT_ID, role: str = 'Admin') -> dict:
    token = tokens.make_auth_token(app, user_id, tenant_id, role)
    return {'Authorization': f'Bearer {token}'}


def encode_token(payload: dict, key: str = 'foobar') -> str:
    now = datetime.now(timezone.utc)
    default_payload = {
        'iat': now,
        'exp': now + timedelta(minutes=5),
        'iss': 'consultrack',
        'use': 'auth',
        'sub': str(USER_ID),
        'ctx': {
            'tenant_id': TENANT_ID,
            'role': 'Admin',
        },
    }
    return jwt.encode({**default_payload, **payload}, key=key, algorithm='HS256')
