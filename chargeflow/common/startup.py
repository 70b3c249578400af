"""Startup logging of the effective configuration, secrets masked."""

from sqlalchemy.engine import make_url

from chargeflow.common.config import CommonSettings
from chargeflow.common.logging import logger

SECRET_MARKERS = ("key", "secret", "password", "token")


def redacted_config(config: CommonSettings, fields: list[str]) -> dict:
    """Selected settings with credentials masked; DSNs keep host and database."""

    shown = {}
    for name in fields:
        value = getattr(config, name)
        if value and any(marker in name for marker in SECRET_MARKERS):
            value = "<redacted>"
        elif value and name.endswith("_dsn"):
            value = make_url(value).render_as_string(hide_password=True)
        shown[name] = value
    return shown


def log_startup_config(config: CommonSettings, fields: list[str]) -> None:
    logger.info("startup_config service=%s config=%s", config.service_name, redacted_config(config, fields))
