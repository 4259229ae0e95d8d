"""Check that SteVe and Odoo are reachable with the configured credentials."""

import asyncio
import sys
import os

# Add parent dir to path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.config import get_odoo_config, get_steve_config
from app.core.logging import configure_logging
from app.infrastructure.odoo_api import OdooAPIClient
from app.infrastructure.steve_api import SteveAPIClient


async def check() -> bool:
    steve_ok = await SteveAPIClient(get_steve_config()).check_connection()
    odoo_ok = await OdooAPIClient(get_odoo_config()).check_connection()
    print(f"SteVe: {'OK' if steve_ok else 'FAILED'}")
    print(f"Odoo:  {'OK' if odoo_ok else 'FAILED'}")
    return steve_ok and odoo_ok


if __name__ == "__main__":
    configure_logging()
    sys.exit(0 if asyncio.run(check()) else 1)
