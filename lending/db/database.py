# lending/db/database.py
from typing import Optional
from beanie import init_beanie
from pymongo import AsyncMongoClient
from lending.core.config import MONGODB_URL, DATABASE_NAME, MONGODB_USE_TRANSACTIONS
from lending.models.item import ItemDocument
from lending.models.borrow_request import BorrowRequestDocument
from lending.models.notification import NotificationDocument
from lending.models.profile import ProfileDocument
import logging

logger = logging.getLogger(__name__)

_client: Optional[AsyncMongoClient] = None


def get_client() -> AsyncMongoClient:
    if _client is None:
        raise RuntimeError("Database client is not initialized; call init_db() first.")
    return _client


async def init_db():
    """Inisialisasi koneksi database dan Beanie."""
    global _client
    logger.info("Connecting to MongoDB...") # Detail URL sudah dicatat oleh config.py
    _client = AsyncMongoClient(MONGODB_URL, tz_aware=True)

    database = _client[DATABASE_NAME]
    logger.info(f"Using database: {DATABASE_NAME}")

    await init_beanie(
        database=database,
        document_models=[
            ItemDocument,
            BorrowRequestDocument,
            NotificationDocument,
            ProfileDocument,
        ]
    )
    logger.info("Beanie initialization complete for all models.")
    if not MONGODB_USE_TRANSACTIONS:
        logger.warning(
            "MONGODB_USE_TRANSACTIONS is off: lifecycle writes fall back to conditional updates with a "
            "compensating revert and are NOT atomic across request and item. Use a replica set in production."
        )


async def close_db():
    global _client
    if _client is not None:
        await _client.close()
        _client = None
        logger.info("MongoDB connection closed.")
