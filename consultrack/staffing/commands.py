from pathlib import Path

import click
import simplejson
import yaml
from sqlalchemy import select

from ..extensions import db
from . import models, reports, schema

DEMO_DATA_PATH = Path(__file__).parent / "demo_data.yaml"
DATE_FORMATS = ['%Y-%m-%d']


def _obj_diff(obj, data: dict) -> object | None:
    changed = False
    for field, value in data.items():
        if getattr(obj, field, None) != value:
            changed = True
            setattr(obj, field, value)
    if changed:
        return obj
    return None


def _render(rows: list[dict], row_schema, fmt: str) -> str:
    # Round-trip through JSON so Decimals become plain numbers for YAML
    payload = simplejson.loads(row_schema.dumps(rows))
    if fmt == 'json':
        return simplejson.dumps(payload, indent=2)
    return yaml.safe_dump(payload, sort_keys=False)


def report_options(func):
    func = click.option('--format', 'fmt',
                        type=click.Choice(['yaml', 'json'], case_sensitive=False),
                        default='yaml',
                        help='Output format')(func)
    func = click.option('--end', type=click.DateTime(formats=DATE_FORMATS), required=True)(func)
    func = click.option('--start', type=click.DateTime(formats=DATE_FORMATS), required=True)(func)
    func = click.option('--tenant', 'tenant_id', type=int, required=True)(func)
    return func


@click.command('utilization-report')
@report_options
@click.option('--consultant', 'consultant_id', type=int, default=None)
def utilization_report_cmd(tenant_id: int, start, end, fmt: str, consultant_id: int | None):
    """Print hours and allocation per consultant for a date window."""
    if end < start:
        raise click.BadParameter("--end must not be before --start")
    rows = reports.utilization_report(db.session, tenant_id, start.date(), end.date(), consultant_id)
    click.echo(_render(rows, schema.UtilizationRow(many=True), fmt.lower()))


@click.command('revenue-report')
@report_options
def revenue_report_cmd(tenant_id: int, start, end, fmt: str):
    """Print billable revenue and margin per client and month."""
    if end < start:
        raise click.BadParameter("--end must not be before --start")
    rows = reports.revenue_report(db.session, tenant_id, start.date(), end.date())
    click.echo(_render(rows, schema.RevenueRow(many=True), fmt.lower()))


def _upsert(model, tenant_id: int, items: dict[str, dict], extra: dict | None = None) -> tuple[int, int]:
    inserts, updates = 0, 0
    items_in_db = {
        obj.code: obj
        for obj in db.session.execute(select(model).filter_by(tenant_id=tenant_id)).scalars()
    }
    for code, item_data in items.items():
        item_data = {**item_data, **(extra or {})}
        existing = items_in_db.get(code)
        if not existing:
            inserts += 1
            click.echo(f'INSERT new {model.__name__}(code={code})')
            db.session.add(model(tenant_id=tenant_id, code=code, **item_data))
        elif updated_obj := _obj_diff(existing, item_data):
            updates += 1
            click.echo(f'UPDATE {model.__name__}(code={code}) with {item_data}')
            db.session.add(updated_obj)
    return inserts, updates


def _seed_demo_data(data: dict, dry_run: bool) -> models.Tenant:
    tenant = db.session.execute(
        select(models.Tenant).filter_by(name=data['tenant'])).scalar_one_or_none()
    if tenant is None:
        tenant = models.Tenant(name=data['tenant'])
        db.session.add(tenant)
        db.session.flush()
        click.echo(f'INSERT new Tenant(name={tenant.name})')

    organization = db.session.execute(
        select(models.Organization).filter_by(tenant_id=tenant.id, name=data['organization'])
    ).scalar_one_or_none()
    if organization is None:
        organization = models.Organization(tenant_id=tenant.id, name=data['organization'])
        db.session.add(organization)
        db.session.flush()

    _ins, _upd = _upsert(models.Client, tenant.id, data.get('clients', {}))
    click.echo(f"model Client: {_ins} inserts, {_upd} updates")
    _ins, _upd = _upsert(models.Consultant, tenant.id, data.get('consultants', {}),
                         extra={'organization_id': organization.id})
    click.echo(f"model Consultant: {_ins} inserts, {_upd} updates")
    db.session.flush()

    clients = {
        client.code: client.id
        for client in db.session.execute(select(models.Client).filter_by(tenant_id=tenant.id)).scalars()
    }
    projects = {}
    for code, item_data in data.get('projects', {}).items():
        client_code = item_data.get('client')
        if client_code not in clients:
            raise click.ClickException(f"Project {code} refers to unknown client {client_code}")
        projects[code] = {'name': item_data['name'], 'client_id': clients[client_code]}
    _ins, _upd = _upsert(models.Project, tenant.id, projects)
    click.echo(f"model Project: {_ins} inserts, {_upd} updates")

    if dry_run:
        db.session.rollback()
    else:
        db.session.commit()
    return tenant


@click.command('seed-demo')
@click.option('--dry-run', '-x', is_flag=True, default=False,
              help='Show what changes would be made')
def seed_demo_cmd(dry_run: bool):
    """Load demo tenants, clients, consultants and projects."""
    with DEMO_DATA_PATH.open('r') as demo_file:
        data = yaml.safe_load(demo_file)
    tenant = _seed_demo_data(data, dry_run)
    if not dry_run:
        click.echo(f"Demo data ready for tenant {tenant.id}")
