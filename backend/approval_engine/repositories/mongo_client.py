"""Process-wide MongoDB handle and the engine's index set"""
from typing import Any, Dict, List, Optional, Tuple
from pymongo import MongoClient as PyMongoClient
from pymongo import ASCENDING, DESCENDING
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import ConnectionFailure, PyMongoError

from ..config.settings import settings
from ..utils.logger import get_logger

logger = get_logger(__name__)

_client: Optional[PyMongoClient] = None
_database: Optional[Database] = None


# =============================================================================
# Connection
# =============================================================================

def get_client() -> PyMongoClient:
    global _client
    if _client is None:
        client = PyMongoClient(
            settings.mongo_uri,
            serverSelectionTimeoutMS=5000,
            connectTimeoutMS=5000,
            socketTimeoutMS=30000,
        )
        try:
            client.admin.command("ping")
        except ConnectionFailure as e:
            logger.error(f"MongoDB unreachable at {settings.mongo_uri}: {e}")
            raise
        logger.info(f"MongoDB connected ({settings.mongo_uri})")
        _client = client
    return _client


def get_database() -> Database:
    global _database
    if _database is None:
        _database = get_client()[settings.mongo_db]
    return _database


def use_database(database: Optional[Database]) -> None:
    """
    Point every repository at an explicit database.

    Tests hand in a mongomock database here; None restores the configured
    connection on next use.
    """
    global _database
    _database = database


def get_collection(name: str) -> Collection:
    return get_database()[name]


def close_connection() -> None:
    global _client, _database
    if _client is None:
        return
    _client.close()
    _client = None
    _database = None
    logger.info("MongoDB connection closed")


# =============================================================================
# Indexes
# =============================================================================

IndexSpec = Tuple[Any, Dict[str, Any]]

INDEXES: Dict[str, List[IndexSpec]] = {
    "workflow_definitions": [
        ("definition_id", {"unique": True}),
        ([("company_id", ASCENDING), ("scope", ASCENDING), ("is_active", ASCENDING)], {}),
        ("request_type", {}),
        ("employee_id", {}),
    ],
    "definition_versions": [
        ("definition_version_id", {"unique": True}),
        ([("definition_id", ASCENDING), ("version", DESCENDING)], {"unique": True}),
    ],
    "workflow_instances": [
        ("instance_id", {"unique": True}),
        # At most one live instance per originating request
        ([("request_type", ASCENDING), ("request_id", ASCENDING)], {
            "unique": True,
            "partialFilterExpression": {"is_active": True},
            "name": "uniq_active_request",
        }),
        ([("applicant_id", ASCENDING), ("status", ASCENDING)], {}),
        ([("approval_records.assigned_approver_ids", ASCENDING), ("is_active", ASCENDING)], {}),
        ("definition_id", {}),
        ("submitted_at", {}),
    ],
    "delegations": [
        ("delegation_id", {"unique": True}),
        ([("principal_id", ASCENDING), ("is_active", ASCENDING)], {}),
        ([("delegate_id", ASCENDING), ("is_active", ASCENDING)], {}),
    ],
    "org_assignments": [
        ([("employee_id", ASCENDING), ("company_id", ASCENDING)], {"unique": True}),
        ([("company_id", ASCENDING), ("department_id", ASCENDING)], {}),
        ([("company_id", ASCENDING), ("position_id", ASCENDING)], {}),
        ([("company_id", ASCENDING), ("role_id", ASCENDING)], {}),
    ],
    "notification_outbox": [
        ("notification_id", {"unique": True}),
        ([("status", ASCENDING), ("next_retry_at", ASCENDING)], {}),
        ("ref_id", {}),
        ("locked_until", {}),
    ],
    "audit_events": [
        ("audit_event_id", {"unique": True}),
        ([("instance_id", ASCENDING), ("timestamp", ASCENDING), ("sequence", ASCENDING)], {}),
        ("correlation_id", {}),
    ],
}


def create_indexes() -> None:
    db = get_database()
    for collection_name, specs in INDEXES.items():
        collection = db[collection_name]
        for keys, options in specs:
            collection.create_index(keys, **options)
    logger.info(f"Indexes ensured on {len(INDEXES)} collections")


def health_check() -> Dict[str, Any]:
    try:
        get_database().client.admin.command("ping")
    except PyMongoError as e:
        logger.error(f"MongoDB health check failed: {e}")
        return {"status": "unhealthy", "database": settings.mongo_db, "error": str(e)}
    return {"status": "healthy", "database": settings.mongo_db, "connection": "ok"}
