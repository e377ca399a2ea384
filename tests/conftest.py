"""Shared fixtures for the reconciliation test suite.

Every test that touches the database gets a fresh mongomock database swapped
in for the lazily-connected one in db.py, so nothing here needs a server.
"""
from datetime import datetime
from unittest import mock

import mongomock
import pytest
from bson import ObjectId

import db


@pytest.fixture
def mongo(monkeypatch):
    """Empty in-memory database wired into db.col()."""
    database = mongomock.MongoClient().afp_personnel_test
    monkeypatch.setattr(db, "_db", database)
    database.training_registrations.create_index([("trainingId", 1), ("userId", 1)], unique=True)
    return database


@pytest.fixture
def spy_col(monkeypatch, mongo):
    """
    Replace `col` in a module with one returning MagicMock(wraps=collection),
    so tests can count writes while the real (mock) collection still runs.
    """
    spies = {}

    def install(module):
        def _col(name):
            if name not in spies:
                spies[name] = mock.MagicMock(wraps=mongo[name])
            return spies[name]
        monkeypatch.setattr(module, "col", _col)
        return spies

    return install


@pytest.fixture
def person_factory(mongo):
    """Insert a personnel record into `users` and return it."""
    def make(first="Juan", last="Dela Cruz", rank="PVT", company="Alpha", email=None,
             collection="users", **extra):
        doc = {
            "_id": ObjectId(),
            "firstName": first,
            "lastName": last,
            "rank": rank,
            "company": company,
            "email": email or f"{first}.{last}@afp.mil.ph".lower().replace(" ", ""),
            "role": "reservist",
            **extra,
        }
        mongo[collection].insert_one(doc)
        return doc
    return make


def attendee(user_id, status="registered", first="Juan", last="Dela Cruz", **extra):
    """Embedded attendee entry as written by the registration page."""
    entry = {
        "userId": user_id,
        "registrationDate": datetime(2024, 3, 1, 8, 0),
        "userData": {
            "firstName": first,
            "lastName": last,
            "fullName": f"{first} {last}".strip(),
            "rank": "PVT",
            "company": "Alpha",
            "email": f"{first}.{last}@afp.mil.ph".lower().replace(" ", ""),
        },
    }
    if status is not None:
        entry["status"] = status
    entry.update(extra)
    return entry


@pytest.fixture
def training_factory(mongo):
    def make(title="KAMANDAG 39", attendees=None, registered=0, status="upcoming",
             capacity=None, **extra):
        doc = {
            "_id": ObjectId(),
            "title": title,
            "status": status,
            "registered": registered,
            "attendees": attendees or [],
            "startDate": datetime(2024, 4, 1),
            **extra,
        }
        if capacity is not None:
            doc["capacity"] = capacity
        mongo.trainings.insert_one(doc)
        return doc
    return make
