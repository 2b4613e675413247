from typing import Optional

import click
from flask import Flask, Response, json, g, abort
from marshmallow import ValidationError
from werkzeug.exceptions import BadRequest, HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from .auth.utils import auth_middleware
from .config import Config, StaffingSettings, get_config
from .extensions import db, migrate, marshmallow
from .logger import set_log_level
from .schema import spec
from .staffing.views import blueprint as staffing_blueprint


def create_app(test_config: Optional[Config] = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)

    if test_config:
        app.config.from_object(test_config)
    else:
        app.config.from_object(get_config())

    set_log_level(app.config['LOG_LEVEL'])
    app.extensions['staffing'] = StaffingSettings.from_config(app.config)

    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)

    register_extensions(app)
    register_blueprints(app)

    app.before_request(auth_middleware)

    @app.errorhandler(HTTPException)
    def handle_exception(e):
        """Return the JSON error envelope instead of HTML for HTTP errors."""
        # start with the correct headers and status code from the error
        response = e.get_response()

        error_payload = {
            "code": e.code,
            "name": e.name,
        }
        if isinstance(e.description, ValidationError):
            error_payload['errors'] = e.description.normalized_messages()
        else:
            error_payload['description'] = e.description

        response.data = json.dumps({"success": False, "error": error_payload})
        response.content_type = "application/json"
        return response

    @app.errorhandler(ValidationError)
    def handle_validation_error(err):
        return handle_exception(BadRequest(err))

    @app.route('/api')
    def hello():
        if g.auth_state.identity:
            return f'Welcome, user {g.auth_state.identity.user_id}'
        return 'Welcome, Stranger'

    @app.cli.command('openapi')
    @click.option('--format',
                  'fmt',
                  type=click.Choice(['yaml', 'json'], case_sensitive=False),
                  default='yaml',
                  help='OpenAPI Spec format')
    def openapi(fmt: str):
        formats = {
            'yaml': spec.to_yaml,
            'json': lambda: json.dumps(spec.to_dict()),
        }
        click.echo(formats.get(fmt.lower())())

    @app.route('/api/openapi.<fmt>')
    def open_api_yaml(fmt: str):
        formats = {
            'yaml': lambda: Response(
                spec.to_yaml(),
                mimetype="text/plain",
            ),
            'json': lambda: Response(
                json.dumps(spec.to_dict()),
                mimetype="application/json",
            ),
        }
        if not (spec_responder := formats.get(fmt)):
            abort(404, "Resource not found.")
        return spec_responder()

    return app


def register_extensions(app: Flask):
    db.init_app(app)
    migrate.init_app(app, db)
    marshmallow.init_app(app)


def register_blueprints(app: Flask):
    app.register_blueprint(staffing_blueprint, url_prefix="/api/assignments")

    with app.test_request_context():
        for name, func in app.view_functions.items():
            if not name.startswith('staffing.'):
                continue
            spec.path(view=func)

    spec_draft = spec.to_dict()
    tags = set(t['name'] for t in spec_draft.get('tags', []))
    for route, operations in spec_draft['paths'].items():
        for method, operation in operations.items():
            op_tags = operation.get('tags', [])
            if op_tags and op_tags[0] not in tags:
                spec.tag({'name': op_tags[0]})
                tags.add(op_tags[0])
