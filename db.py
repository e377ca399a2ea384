# db.py
# One MongoClient per process; pages, scripts and helpers all go through col().
from pymongo import MongoClient

from config import MONGODB_URI, DB_NAME

_client = None
_db = None


def get_db():
    global _client, _db
    if _db is None:
        if not MONGODB_URI:
            raise RuntimeError("MONGODB_URI is not set (add it to .env)")
        _client = MongoClient(
            MONGODB_URI,
            retryWrites=True,
            serverSelectionTimeoutMS=8000,
            appname="AFP_PERSONNEL_RECORDS",
            tz_aware=True,
        )
        _client.admin.command("ping")  # fail fast on a bad URI or network
        _db = _client[DB_NAME]
    return _db


def col(name: str):
    return get_db()[name]


def close():
    global _client, _db
    if _client is not None:
        _client.close()
    _client = None
    _db = None
