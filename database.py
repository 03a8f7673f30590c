"""
Database helpers for the Edu Platform API

One MongoClient is opened per process by the app lifespan (see main.py) and
kept on ``app.state``. Route handlers never touch a module-level client: they
receive the Database through the ``get_db`` dependency, which tests override
with an in-memory database.
"""
import logging
import os
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Sequence, Union
from urllib.parse import quote_plus

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import HTTPException, Request
from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

logger = logging.getLogger(__name__)

DEFAULT_CLUSTER = "cluster0.mongodb.net"
DEFAULT_DATABASE_NAME = "eduPlatform"


def build_database_url() -> Optional[str]:
    """DATABASE_URL wins; otherwise assemble an Atlas URL from DB_USER / DB_PASS."""
    url = os.getenv("DATABASE_URL")
    if url:
        return url
    user = os.getenv("DB_USER")
    password = os.getenv("DB_PASS")
    if not user or not password:
        return None
    cluster = os.getenv("DB_CLUSTER", DEFAULT_CLUSTER)
    return (
        f"mongodb+srv://{quote_plus(user)}:{quote_plus(password)}@{cluster}/"
        "?retryWrites=true&w=majority"
    )


def connect(url: Optional[str] = None) -> Optional[MongoClient]:
    url = url or build_database_url()
    if not url:
        logger.error("Database is not configured (set DATABASE_URL or DB_USER/DB_PASS)")
        return None
    return MongoClient(url, tz_aware=True)


def database_name() -> str:
    return os.getenv("DATABASE_NAME", DEFAULT_DATABASE_NAME)


def get_db(request: Request) -> Database:
    """FastAPI dependency for the shared database handle."""
    db = getattr(request.app.state, "db", None)
    if db is None:
        raise HTTPException(status_code=500, detail="Database unavailable")
    return db


# ----------------------
# Document helpers
# ----------------------

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def oid(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise HTTPException(status_code=400, detail="Invalid id format")


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    d = {**doc}
    for k, v in list(d.items()):
        if isinstance(v, ObjectId):
            d[k] = str(v)
        elif isinstance(v, datetime):
            d[k] = as_utc(v).isoformat()
    return d


def create_document(db: Database, collection: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    res = db[collection].insert_one(doc)
    logger.info(f"Inserted document into {collection}", extra={"collection": collection})
    return str(res.inserted_id)


def get_documents(
    db: Database,
    collection: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    sort_field: Optional[str] = None,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    cursor = db[collection].find(filter_dict or {})
    if sort_field:
        cursor = cursor.sort(sort_field, -1)
    if limit:
        cursor = cursor.limit(limit)
    return [serialize_doc(d) for d in cursor]


# ----------------------
# Compensated multi-step writes
# ----------------------

class Step(NamedTuple):
    """One write in a multi-step operation; ``undo`` receives the step's result."""

    name: str
    action: Callable[[], Any]
    undo: Optional[Callable[[Any], Any]] = None


def run_compensated(steps: Sequence[Step]) -> List[Any]:
    """Run steps in order; when one fails, undo the completed ones in reverse and re-raise.

    MongoDB gives per-document atomicity only, so a purchase (payment, enrollment,
    counter) is not a unit. Undo actions delete or restore what earlier steps wrote.
    """
    done: List[tuple] = []
    for step in steps:
        try:
            result = step.action()
        except Exception:
            logger.error(
                f"Step '{step.name}' failed, compensating {len(done)} completed step(s)",
                exc_info=True,
            )
            for prev, prev_result in reversed(done):
                if prev.undo is None:
                    continue
                try:
                    prev.undo(prev_result)
                except PyMongoError:
                    logger.error(f"Compensation for '{prev.name}' failed", exc_info=True)
            raise
        done.append((step, result))
    return [result for _, result in done]
