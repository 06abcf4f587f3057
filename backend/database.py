from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
import os
import logging
from pathlib import Path
from contextlib import asynccontextmanager

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

logger = logging.getLogger(__name__)

class Database:
    client: AsyncIOMotorClient = None
    db = None

    async def connect(self):
        try:
            mongo_url = os.environ['MONGO_URL']
            self.client = AsyncIOMotorClient(mongo_url)
            self.db = self.client[os.environ['DB_NAME']]
            # Verify connection
            await self.db.command("ping")
            logger.info(f"Connected to MongoDB: {os.environ['DB_NAME']}")

            await self._create_indexes()
        except Exception as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise

    async def close(self):
        if self.client:
            self.client.close()
            logger.info("MongoDB connection closed")

    def get_db(self):
        return self.db

    async def _create_indexes(self):
        """Create MongoDB indexes for lookups and uniqueness guarantees."""
        try:
            # Users - email and phone are globally unique
            await self.db.users.create_index("user_id", unique=True)
            await self.db.users.create_index("email", unique=True)
            await self.db.users.create_index("phone_number", unique=True)
            await self.db.users.create_index("full_name")
            await self.db.users.create_index("reset_password_token", sparse=True)
            await self.db.users.create_index([("subscription.status", 1), ("subscription.expiry_date", 1)])

            # Transactions - order_id uniqueness is what stops duplicate orders,
            # the pending invalidation on create is only cleanup
            await self.db.transactions.create_index("order_id", unique=True)
            await self.db.transactions.create_index([("user_id", 1), ("created_at", -1)])
            await self.db.transactions.create_index([("user_id", 1), ("status", 1)])
            await self.db.transactions.create_index("status")

            # Watchlists - one list per (user, name)
            await self.db.watchlists.create_index([("user_id", 1), ("name", 1)], unique=True)

            # Stocks - upsert key for the MySQL import plus screener/sort fields
            await self.db.stocks.create_index("ticker", unique=True)
            await self.db.stocks.create_index([("company_name", "text"), ("ticker", "text")])
            await self.db.stocks.create_index("analysis.business_quality")
            await self.db.stocks.create_index("analysis.timing_label")
            await self.db.stocks.create_index("analysis.conflict.has_conflict")
            await self.db.stocks.create_index("analysis.flexbit_category")
            await self.db.stocks.create_index([("technical.last_updated", -1)])
            await self.db.stocks.create_index("sector")
            await self.db.stocks.create_index([("analysis.flexbit_score", -1), ("sector", 1)])
            await self.db.stocks.create_index([("technical.trend", 1), ("technical.trend_strength", 1)])

            # Content imported from MySQL
            await self.db.news.create_index("id", unique=True)
            await self.db.news.create_index([("date", -1)])
            await self.db.faqs.create_index("question", unique=True)
            await self.db.faqs.create_index("is_active")
            await self.db.faqs.create_index("category")
            await self.db.wikis.create_index("id", unique=True)
            await self.db.wikis.create_index([("field_category", 1), ("display_order", 1)])

            # Audit log indexes - for timeline queries
            await self.db.audit_logs.create_index([("user_id", 1), ("timestamp", -1)])
            await self.db.audit_logs.create_index([("action", 1), ("timestamp", -1)])
            await self.db.message_logs.create_index([("created_at", -1)])
            logger.info("MongoDB indexes created/verified")
        except Exception as e:
            # Indexes may already exist with different options, log but don't fail
            logger.warning(f"Index creation note: {e}")

# Global database instance
database = Database()

@asynccontextmanager
async def get_db_context():
    """Context manager for standalone scripts to access the database.

    Usage in scripts:
        async with get_db_context() as db:
            await db.stocks.find_one(...)
    """
    client = None
    try:
        mongo_url = os.environ['MONGO_URL']
        db_name = os.environ['DB_NAME']
        client = AsyncIOMotorClient(mongo_url)
        db = client[db_name]
        await db.command("ping")
        logger.info(f"Script connected to MongoDB: {db_name}")
        yield db
    finally:
        if client:
            client.close()
            logger.info("Script MongoDB connection closed")
