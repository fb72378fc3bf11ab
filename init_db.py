"""
Create the session tables (sessions, session_activity_log)

    python init_db.py            # uses DATABASE_URL
    python init_db.py --echo     # print the DDL as it runs
"""
import argparse
import asyncio
import logging

from sqlalchemy.ext.asyncio import create_async_engine

from image_checker.core.config import settings
from image_checker.core.database import create_tables

logger = logging.getLogger("init_db")


async def init_db(echo: bool = False):
    engine = create_async_engine(settings.DATABASE_URL, echo=echo)
    try:
        await create_tables(engine)
    finally:
        await engine.dispose()
    logger.info(f"✅ Session tables ready at {engine.url.render_as_string(hide_password=True)}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--echo", action="store_true", help="Log emitted SQL")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    asyncio.run(init_db(echo=args.echo))
