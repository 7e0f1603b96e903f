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
        """Create MongoDB indexes for per-user lookups."""
        try:
            # One subscription row and one settings row per user (upserts key on user_id)
            await self.db.user_subscriptions.create_index("user_id", unique=True)
            await self.db.user_settings.create_index("user_id", unique=True)

            # Invoices - billing history per user, newest first
            await self.db.invoices.create_index([("user_id", 1), ("created_at", -1)])
            try:
                await self.db.invoices.create_index("razorpay_payment_id", unique=True, sparse=True)
            except Exception:
                pass  # Index may already exist with different options

            # Gateway orders - one row per order; a payment id can settle only one order
            await self.db.payment_orders.create_index("order_id", unique=True)
            await self.db.payment_orders.create_index("user_id")
            try:
                await self.db.payment_orders.create_index("razorpay_payment_id", unique=True, sparse=True)
            except Exception:
                pass

            try:
                await self.db.privileged_emails.create_index("email", unique=True)
            except Exception:
                pass

            # Usage counts against plan limits
            await self.db.companies.create_index("user_id")
            await self.db.contacts.create_index("user_id")
            await self.db.job_openings.create_index("user_id")

            # Audit log indexes
            await self.db.audit_logs.create_index([("actor_id", 1), ("timestamp", -1)])
            await self.db.audit_logs.create_index("action")
            logger.info("MongoDB indexes created/verified")
        except Exception as e:
            # Indexes may already exist, log but don't fail
            logger.warning(f"Index creation note: {e}")

# Global database instance
database = Database()

@asynccontextmanager
async def get_db_context():
    """Context manager for standalone scripts to access the database.

    Usage in scripts:
        async with get_db_context() as db:
            await db.user_subscriptions.find_one(...)
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
