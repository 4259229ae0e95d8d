"""
API Dependencies — downstream clients and configuration.
"""

from app.config import OdooConfig, SteveConfig, get_odoo_config, get_steve_config
from app.infrastructure.odoo_api import OdooAPIClient
from app.infrastructure.steve_api import SteveAPIClient


def get_odoo_settings() -> OdooConfig:
    return get_odoo_config()


def get_odoo_client() -> OdooAPIClient:
    """Get Odoo client instance."""
    return OdooAPIClient(get_odoo_config())


def get_steve_client() -> SteveAPIClient:
    """Get SteVe client instance."""
    return SteveAPIClient(get_steve_config())
