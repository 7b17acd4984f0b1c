import asyncio
from sqlalchemy import text
from audience.core.config import settings
from audience.core.db import SessionLocal

async def main():
    print("JWT_ISSUER:", settings.JWT_ISSUER)
    print("JWT_AUDIENCE:", settings.JWT_AUDIENCE)
    print("DB_POOL_SIZE:", settings.DB_POOL_SIZE)
    print("DB_ISOLATION_LEVEL:", settings.DB_ISOLATION_LEVEL)
    print("DB_NOWAIT_LOCKS:", settings.DB_NOWAIT_LOCKS)
    print("EVALUATOR_BASE_URL:", settings.EVALUATOR_BASE_URL or "(not configured)")
    print("EVALUATOR_TIMEOUT_SEC:", settings.EVALUATOR_TIMEOUT_SEC)
    print("FIELD_VALUE_SEARCH_RATE:", settings.FIELD_VALUE_SEARCH_RATE)
    # Check MySQL session isolation level as seen by SQLAlchemy
    async with SessionLocal() as s:
        r = await s.execute(text("SELECT @@transaction_isolation"))
        print("MySQL @@transaction_isolation:", r.scalar())

if __name__ == "__main__":
    asyncio.run(main())
