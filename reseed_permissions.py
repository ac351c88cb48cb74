"""
Permission Reseed Script
------------------------
Rewrites every organization's permission rows from the static permission
matrix. Run after the matrix changes:

    python reseed_permissions.py
"""

import asyncio

from loguru import logger

from app.auth.providers import get_tenancy_service
from app.core.database_connection import db_manager
from app.core.logger_setup import configure_logger


async def main() -> int:
    await db_manager.initialize()
    try:
        count = await get_tenancy_service().reseed_permissions()
    finally:
        await db_manager.close()

    logger.info(f"Permission matrix applied to {count} organization(s)")
    return count


if __name__ == "__main__":
    configure_logger()
    asyncio.run(main())
