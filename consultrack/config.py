import os
from dataclasses import dataclass, field, fields
from decimal import Decimal
from typing import Any, Mapping

from .logger import make_logger

logger = make_logger("consultrack")

TRUTHY = ('1', 'true', 'yes', 'on')


@dataclass
class Config:
    TESTING: bool = False
    DEBUG: bool = TESTING
    SECRET_KEY: str = "foobar"
    SERVER_NAME: str = None
    PREFERRED_URL_SCHEME: str = 'https'
    LOG_LEVEL: str = 'INFO'

    # Flask-SQLAlchemy config
    # https://flask-sqlalchemy.palletsprojects.com/en/3.1.x/config/
    SQLALCHEMY_DATABASE_URI: str = "sqlite:///consultrack.db"
    SQLALCHEMY_ENGINE_OPTIONS: dict = field(default_factory=dict)
    SQLALCHEMY_BINDS: dict = field(default_factory=dict)  # SQLALCHEMY_DATABASE_URI takes precedence
    SQLALCHEMY_ECHO: bool = False
    SQLALCHEMY_RECORD_QUERIES: bool = False
    SQLALCHEMY_TRACK_MODIFICATIONS: bool = False

    # Identity tokens
    JWT_SECRET: str = "foobar"
    JWT_ISSUER: str = "consultrack"

    # Assignment settings
    DEFAULT_CURRENCY: str = 'USD'
    DEFAULT_ALLOCATION_PERCENTAGE: int = 100
    MAX_ALLOCATION_PERCENTAGE: int = 100
    ALLOW_OVERALLOCATION: bool = True
    UTILIZATION_WARNING_THRESHOLD: int = 110
    MAX_CONCURRENT_ASSIGNMENTS: int = 5
    AUTO_APPROVE_DAYS: int = 30
    REQUIRE_APPROVAL_ABOVE_RATE: Decimal = Decimal('500')
    BUDGET_ALERT_THRESHOLDS: list = field(default_factory=lambda: [50, 75, 90, 100])
    DEFAULT_PAGE_SIZE: int = 25
    MAX_PAGE_SIZE: int = 100
    VERSION_CONFLICT_RETRIES: int = 3


@dataclass(frozen=True)
class StaffingSettings:
    """Assignment policy knobs, resolved once per app and handed to services."""
    default_currency: str = 'USD'
    default_allocation_percentage: int = 100
    max_allocation_percentage: int = 100
    allow_overallocation: bool = True
    utilization_warning_threshold: int = 110
    max_concurrent_assignments: int = 5
    auto_approve_days: int = 30
    require_approval_above_rate: Decimal = Decimal('500')
    budget_alert_thresholds: tuple[int, ...] = (50, 75, 90, 100)
    default_page_size: int = 25
    max_page_size: int = 100
    version_conflict_retries: int = 3

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "StaffingSettings":
        return cls(**{
            setting.name: config[setting.name.upper()]
            for setting in fields(cls)
            if setting.name.upper() in config
        } | {
            'budget_alert_thresholds': tuple(sorted(
                config.get('BUDGET_ALERT_THRESHOLDS', cls.budget_alert_thresholds))),
            'require_approval_above_rate': Decimal(str(
                config.get('REQUIRE_APPROVAL_ABOVE_RATE', cls.require_approval_above_rate))),
        })


def _cast(default_val, raw_val: str):
    if isinstance(default_val, bool):
        return raw_val.strip().lower() in TRUTHY
    if isinstance(default_val, int):
        return int(raw_val)
    if isinstance(default_val, Decimal):
        return Decimal(raw_val)
    if isinstance(default_val, list):
        return [int(part) for part in raw_val.split(',') if part.strip()]
    return raw_val


def get_config():
    conf = Config()

    for conf_field in fields(conf):
        if conf_field.name in os.environ:
            default_val = getattr(conf, conf_field.name)
            raw_val = os.environ[conf_field.name]
            if default_val:
                logger.debug(f"Found field '{conf_field.name}' in env overwriting `{default_val}` with `{raw_val}`")
            setattr(conf, conf_field.name, _cast(default_val, raw_val))

    logger.debug(f"get_config produced from environment: {conf} ")
    return conf
