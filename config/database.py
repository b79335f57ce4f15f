from motor.motor_asyncio import AsyncIOMotorClient
from typing import AsyncGenerator, Awaitable, Callable, Optional, TypeVar
import logging
import asyncio
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import ConnectionFailure, ServerSelectionTimeoutError
from config.settings import settings

# Configure logging
_handlers = [logging.StreamHandler()]
if settings.log_file:
    _handlers.append(logging.FileHandler(settings.log_file))

logging.basicConfig(
    level=settings.log_level,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=_handlers
)
logger = logging.getLogger('database')

T = TypeVar("T")

REQUIRED_COLLECTIONS = [
    'barbers',
    'services',
    'appointments',
    'user_appointments',
    'barber_appointments',
    'slot_claims',
    'notifications',
    'ai_usage',
    'ai_weekly_cache',
]


class Database:
    client = None
    db = None
    use_transactions = settings.use_transactions
    MAX_RETRIES = 3
    RETRY_DELAY = 1  # seconds

    @classmethod
    async def connect_db(cls):
        """Create database connection with retries."""
        retries = 0
        last_error = None

        while retries < cls.MAX_RETRIES:
            try:
                mongodb_url = settings.mongodb_url
                database_name = settings.database_name

                if not mongodb_url:
                    raise ValueError("MONGODB_URL environment variable is not set")

                logger.info(f"Attempting to connect to MongoDB (Attempt {retries + 1}/{cls.MAX_RETRIES})")

                cls.client = AsyncIOMotorClient(
                    mongodb_url,
                    serverSelectionTimeoutMS=5000,
                    connectTimeoutMS=10000,
                    socketTimeoutMS=10000,
                    maxPoolSize=50,
                    retryWrites=True,
                    retryReads=True
                )
                cls.db = cls.client[database_name]

                # Test the connection
                await cls.db.command('ping')

                logger.info(f"Successfully connected to MongoDB database: {database_name}")

                collections = await cls.db.list_collection_names()
                for collection in REQUIRED_COLLECTIONS:
                    if collection not in collections:
                        await cls.db.create_collection(collection)
                        logger.info(f"Created collection: {collection}")

                await cls().ensure_indexes()
                return

            except (ConnectionFailure, ServerSelectionTimeoutError) as e:
                last_error = e
                retries += 1
                if retries < cls.MAX_RETRIES:
                    logger.warning(f"Failed to connect to MongoDB (Attempt {retries}/{cls.MAX_RETRIES}). Retrying in {cls.RETRY_DELAY} seconds...")
                    await asyncio.sleep(cls.RETRY_DELAY)
                continue
            except Exception as e:
                logger.error(f"Unexpected error connecting to MongoDB: {str(e)}")
                raise

        logger.error(f"Failed to connect to MongoDB after {cls.MAX_RETRIES} attempts")
        raise last_error

    @classmethod
    async def close_db(cls):
        """Close database connection."""
        if cls.client is not None:
            cls.client.close()
            cls.client = None
            cls.db = None
            logger.info("MongoDB connection closed.")

    def __init__(self):
        """Initialize database instance."""
        if self.db is None:
            raise Exception("Database not initialized. Call connect_db() first.")

        self.barbers = self.db.barbers
        self.services = self.db.services
        self.appointments = self.db.appointments
        self.user_appointments = self.db.user_appointments
        self.barber_appointments = self.db.barber_appointments
        self.slot_claims = self.db.slot_claims
        self.notifications = self.db.notifications
        self.ai_usage = self.db.ai_usage
        self.ai_weekly_cache = self.db.ai_weekly_cache

    async def ensure_indexes(self):
        """Create the indexes the booking flow relies on."""
        await self.barbers.create_index([("barber_id", ASCENDING)], unique=True)
        await self.barbers.create_index([("shop_id", ASCENDING), ("active", ASCENDING)])

        await self.services.create_index([("service_id", ASCENDING)], unique=True)
        await self.services.create_index(
            [("shop_id", ASCENDING), ("active", ASCENDING), ("created_at", DESCENDING)]
        )

        await self.appointments.create_index([("appointment_id", ASCENDING)], unique=True)
        await self.appointments.create_index(
            [("shop_id", ASCENDING), ("barber_id", ASCENDING), ("status", ASCENDING), ("start_at", ASCENDING)]
        )
        await self.appointments.create_index([("user_id", ASCENDING), ("start_at", DESCENDING)])

        await self.user_appointments.create_index(
            [("user_id", ASCENDING), ("appointment_id", ASCENDING)], unique=True
        )
        await self.barber_appointments.create_index(
            [("barber_id", ASCENDING), ("appointment_id", ASCENDING)], unique=True
        )
        # One claim per barber per time cell; PENDING/CONFIRMED appointments hold claims
        await self.slot_claims.create_index([("claim_key", ASCENDING)], unique=True)
        await self.slot_claims.create_index([("appointment_id", ASCENDING)])

        await self.ai_usage.create_index([("usage_key", ASCENDING)], unique=True)
        await self.ai_weekly_cache.create_index([("cache_key", ASCENDING)], unique=True)
        logger.info("Database indexes ensured")

    async def run_in_transaction(self, callback: Callable[[Optional[object]], Awaitable[T]]) -> T:
        """Run callback(session) atomically when the deployment supports it.

        Without transactions the callback gets session=None and the caller is
        responsible for compensating partial writes.
        """
        if not self.use_transactions:
            return await callback(None)

        async with await self.client.start_session() as session:
            return await session.with_transaction(callback)

    @classmethod
    def get_db(cls) -> 'Database':
        """Get database instance."""
        if cls.db is None:
            raise Exception("Database not initialized. Call connect_db() first.")
        return cls()


async def get_db() -> AsyncGenerator[Database, None]:
    """FastAPI dependency for getting database instance."""
    if Database.db is None:
        await Database.connect_db()

    db = Database()
    try:
        yield db
    finally:
        pass  # Connection is managed by the class methods
