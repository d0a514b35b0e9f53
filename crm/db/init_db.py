"""
Initialize database tables
Run this once to create tables
"""

import asyncio
import logging

from crm.config import get_settings
from crm.db.database import init_db
from crm.logging_config import setup_logging


if __name__ == "__main__":
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_json)
    logging.getLogger(__name__).info("Creating database tables...")
    asyncio.run(init_db())
