import sys, pathlib, asyncio
sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))

from sqlalchemy import inspect, text
from audience.core.db import SessionLocal, engine
from audience.models import Base

async def main():
    async with SessionLocal() as s:
        one = await s.execute(text("SELECT 1"))
        print("db-ping:", one.scalar())

        iso = await s.execute(text("SELECT @@transaction_isolation"))
        print("transaction_isolation:", iso.scalar())

    async with engine.connect() as conn:
        existing = await conn.run_sync(lambda sync_conn: set(inspect(sync_conn).get_table_names()))
    for table in sorted(Base.metadata.tables):
        print(f"{table}:", "ok" if table in existing else "MISSING (run scripts/create_tables.py)")

asyncio.run(main())
