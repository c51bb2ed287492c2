from __future__ import annotations

from motor.motor_asyncio import AsyncIOMotorClient

from mongo_backfill.config import RuntimeConfig
from mongo_backfill.repair import REPAIR_FIELDS
from mongo_backfill.sources import MongoDocumentSource


def get_motor_client(mongodb_uri: str) -> AsyncIOMotorClient:
    return AsyncIOMotorClient(mongodb_uri)


def get_document_source(client: AsyncIOMotorClient, config: RuntimeConfig) -> MongoDocumentSource:
    return MongoDocumentSource(
        client,
        config.default_db,
        use_transactions=config.use_transactions,
        projection=list(REPAIR_FIELDS),
    )
