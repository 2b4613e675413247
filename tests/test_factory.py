import json
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable

import pytest
import yaml
from openapi_spec_validator import validate_spec

from consultrack import create_app
from consultrack.config import Config, StaffingSettings, get_config
from .conftest import auth_headers, params, TENANT_ID, USER_ID


def test_config():
    assert not create_app().testing, "By default app.testing should be false"
    assert create_app(
        Config(TESTING=True)).testing, "When `test_config=Config(TESTING=True)` then app.testing should be true"


def test_index(client):
    response = client.get('/api')
    assert response.data == b'Welcome, Stranger'


def test_index_authenticated(app, client):
    response = client.get('/api', headers=auth_headers(app, USER_ID, TENANT_ID))
    assert response.data == f'Welcome, user {USER_ID}'.encode()


@dataclass
class EnvTC:
    env: dict
    expected: dict


@pytest.mark.parametrize(*params({
    'no overrides keeps defaults': EnvTC(
        env={},
        expected={'DEFAULT_CURRENCY': 'USD', 'ALLOW_OVERALLOCATION': True, 'MAX_CONCURRENT_ASSIGNMENTS': 5},
    ),
    'string override': EnvTC(env={'DEFAULT_CURRENCY': 'EUR'}, expected={'DEFAULT_CURRENCY': 'EUR'}),
    'bool override': EnvTC(env={'ALLOW_OVERALLOCATION': 'false'}, expected={'ALLOW_OVERALLOCATION': False}),
    'int override': EnvTC(env={'MAX_CONCURRENT_ASSIGNMENTS': '2'}, expected={'MAX_CONCURRENT_ASSIGNMENTS': 2}),
    'decimal override': EnvTC(
        env={'REQUIRE_APPROVAL_ABOVE_RATE': '750.50'},
        expected={'REQUIRE_APPROVAL_ABOVE_RATE': Decimal('750.50')},
    ),
    'list override': EnvTC(
        env={'BUDGET_ALERT_THRESHOLDS': '80, 95'},
        expected={'BUDGET_ALERT_THRESHOLDS': [80, 95]},
    ),
}))
def test_get_config_env(monkeypatch, env, expected):
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    conf = get_config()
    assert {key: getattr(conf, key) for key in expected} == expected


def test_staffing_settings_from_config():
    app = create_app(Config(
        TESTING=True,
        MAX_CONCURRENT_ASSIGNMENTS=2,
        BUDGET_ALERT_THRESHOLDS=[90, 50],
        REQUIRE_APPROVAL_ABOVE_RATE='300',
    ))
    settings = app.extensions['staffing']
    assert isinstance(settings, StaffingSettings)
    assert (settings.max_concurrent_assignments, settings.budget_alert_thresholds,
            settings.require_approval_above_rate) == (2, (50, 90), Decimal('300'))
    assert settings.default_currency == 'USD'


def nested_get(doc: dict, path: str, separator: str = '/'):
    parts = path.split(separator)

    if parts[0] == '#':
        parts = parts[1:]

    node = doc
    for needle in parts:
        if not isinstance(node, dict):
            break
        node = node.get(needle)
    return node


def strict_validate_openapi_spec(spec: dict):
    assert spec
    validate_spec(spec)
    assert sorted(list(spec['paths'].keys())) == [
        '/api/assignments',
        '/api/assignments/bulk',
        '/api/assignments/consultant/{consultant_id}/allocation',
        '/api/assignments/pending-approvals',
        '/api/assignments/revenue-report',
        '/api/assignments/statistics',
        '/api/assignments/utilization-report',
        '/api/assignments/{ident}',
        '/api/assignments/{ident}/activate',
        '/api/assignments/{ident}/approve',
        '/api/assignments/{ident}/cancel',
        '/api/assignments/{ident}/complete',
        '/api/assignments/{ident}/documents',
        '/api/assignments/{ident}/extend',
        '/api/assignments/{ident}/extensions/{extension_id}/decision',
        '/api/assignments/{ident}/hold',
        '/api/assignments/{ident}/milestones',
        '/api/assignments/{ident}/milestones/{milestone_id}',
        '/api/assignments/{ident}/notes',
        '/api/assignments/{ident}/reject',
        '/api/assignments/{ident}/resume',
        '/api/assignments/{ident}/submit',
        '/api/assignments/{ident}/terminate',
        '/api/assignments/{ident}/time-log',
    ]
    assert spec['tags'] == [
        {'name': 'assignment'},
        {'name': 'approval'},
        {'name': 'report'},
        {'name': 'status'},
        {'name': 'extension'},
        {'name': 'time'},
    ]
    assert spec['components']['securitySchemes'] == {
        'bearerAuth': {'type': 'http', 'scheme': 'bearer', 'bearerFormat': 'JWT'},
    }
    allocation = spec['components']['schemas']['CreateAssignmentRequest']['properties']['allocation_percentage']
    assert (allocation['minimum'], allocation['maximum']) == (0, 100)
    assert all(isinstance(allocation[key], int) for key in ('minimum', 'maximum'))
    hours = spec['components']['schemas']['TimeLogRequest']['properties']['hours']
    assert (hours['minimum'], hours['maximum']) == (0, 24)
    for path, operations in spec['paths'].items():
        assert operations != {}, f"{path} in spec should not be empty"
        for method, operation in operations.items():
            # if the operation has a requestBody, assert that the request
            # body $ref is defined in the spec.
            if request_body_ref := nested_get(
                    operation,
                    'requestBody.content.application/json.schema.$ref', '.'):
                msg = f'{method.upper()} {path}: {request_body_ref} should be defined'
                assert nested_get(spec, request_body_ref) is not None, msg


@dataclass
class OpenAPITC:
    fmt: str
    loader: Callable[[str], dict] | None = None
    exp_status: int = 200


@pytest.mark.parametrize(*params({
    'openapi.yaml should be 200 and be valid': OpenAPITC(fmt='yaml', loader=yaml.safe_load),
    'openapi.json should be 200 and be valid': OpenAPITC(fmt='json', loader=json.loads),
    'openapi.txt should be 404': OpenAPITC(fmt='txt', exp_status=404),
}))
def test_openapi_formats(client, fmt: str, exp_status: int, loader: Callable[[str], dict] | None):
    resp = client.get(f'/api/openapi.{fmt}')
    assert resp.status_code == exp_status
    if loader:
        openapi_spec = loader(resp.data)
        strict_validate_openapi_spec(openapi_spec)


@dataclass
class OpenAPICliTC:
    args: list[str]
    exp_exit_code: int = 0
    exp_stderr: bytes | None = None
    exp_stdout: str | None = None
    loader: Callable[[str], dict] | None = None


@pytest.mark.parametrize(*params(
    {
        'help output': OpenAPICliTC(
            args=['openapi', '--help'],
            exp_stdout="""Usage: consultrack.app openapi [OPTIONS]

Options:
  --format [yaml|json]  OpenAPI Spec format
  --help                Show this message and exit.
""",
        ),
        'yaml as default': OpenAPICliTC(
            args=['openapi'],
            loader=yaml.safe_load,
        ),
        'yaml as requested': OpenAPICliTC(
            args=['openapi', '--format', 'yaml'],
            loader=yaml.safe_load,
        ),
        'json as request': OpenAPICliTC(
            args=['openapi', '--format', 'json'],
            loader=json.loads,
        )
    }
))
def test_openapi_cli(runner, args, exp_exit_code, exp_stdout, exp_stderr, loader):
    res = runner.invoke(args=args)
    assert (res.exit_code, res.stderr_bytes or None) == (exp_exit_code, exp_stderr)
    if exp_stdout is not None:
        assert res.stdout == exp_stdout
    if loader:
        spec = loader(res.stdout)
        strict_validate_openapi_spec(spec)


