from decimal import Decimal

from apispec import APISpec
from apispec.ext.marshmallow import MarshmallowPlugin
from apispec_webframeworks.flask import FlaskPlugin
from marshmallow import fields

from .extensions import marshmallow as ma

marshmallow_plugin = MarshmallowPlugin()
spec = APISpec(
    title="Consultrack",
    version="0.1.0",
    openapi_version="3.0.2",
    plugins=[FlaskPlugin(), marshmallow_plugin],
    servers=[
        {
            'url': 'http://localhost:5000',
            'description': "Local Dev Server",
        }
    ],
    info={
        'description': "Consultant assignment lifecycle, approvals, time tracking and utilization reporting.",
        'contact': {
            'name': 'Support',
            'email': 'support@consultrack.example.com',
        }
    },
    security=[{'bearerAuth': []}],
)
spec.components.security_scheme('bearerAuth', {
    'type': 'http',
    'scheme': 'bearer',
    'bearerFormat': 'JWT',
})


def decimal_bounds(self, field, ret, **kwargs):
    """Render Decimal range bounds as plain numbers."""
    return {
        key: int(value) if value == value.to_integral_value() else float(value)
        for key, value in ret.items()
        if key in ('minimum', 'maximum') and isinstance(value, Decimal)
    }


marshmallow_plugin.converter.add_attribute_function(decimal_bounds)


class ErrorDetail(ma.Schema):
    code = fields.Int(required=True)
    name = fields.String(required=True)
    description = fields.String()
    errors = fields.Dict(keys=fields.String())


class ErrorResponse(ma.Schema):
    success = fields.Boolean(dump_default=False)
    error = fields.Nested(ErrorDetail(), required=True)
