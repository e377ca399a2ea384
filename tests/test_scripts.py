"""Command-line entry points: dry-run by default, --commit writes."""
from bson import ObjectId
from pymongo.errors import PyMongoError

from scripts import (
    audit_training_registrations,
    fix_training_attendees,
    sync_registrations,
    sync_training_counts,
)
from tests.conftest import attendee

A, B = ObjectId(), ObjectId()


def test_sync_counts_dry_run(mongo, training_factory, capsys):
    t = training_factory(attendees=[attendee(A), attendee(A)], registered=5)

    assert sync_training_counts.main(["--source", "attendees"]) == 0

    out = capsys.readouterr().out
    assert 'registered 5 -> 1' in out
    assert "dry-run" in out
    assert mongo.trainings.find_one({"_id": t["_id"]})["registered"] == 5


def test_sync_counts_commit(mongo, training_factory, capsys):
    t = training_factory(attendees=[attendee(A), attendee(B, "invited")], registered=5)

    assert sync_training_counts.main(["--source", "attendees", "--commit"]) == 0

    assert "updated records: 1" in capsys.readouterr().out
    assert mongo.trainings.find_one({"_id": t["_id"]})["registered"] == 1


def test_sync_counts_reports_unmigrated(mongo, training_factory, capsys):
    training_factory(attendees=[attendee(A)], registered=1)
    assert sync_training_counts.main(["--source", "registrations", "--commit"]) == 0
    assert "not migrated yet: 1" in capsys.readouterr().out


def test_sync_counts_database_error(mongo, monkeypatch, capsys):
    def down(**kwargs):
        raise PyMongoError("no primary")

    monkeypatch.setattr(sync_training_counts, "reconcile_all", down)
    assert sync_training_counts.main(["--commit"]) == 1
    assert "Database error: no primary" in capsys.readouterr().out


def test_sync_registrations(mongo, training_factory, person_factory, capsys):
    person = person_factory("Maria", "Santos", rank="SGT")
    t = training_factory(attendees=[attendee(person["_id"]), attendee(person["_id"]), attendee(B)],
                         registered=3)

    assert sync_registrations.main(["--refresh", "--rebuild-cache", "--ensure-indexes"]) == 0

    out = capsys.readouterr().out
    assert "Migration Summary" in out
    assert "Total registrations migrated: 2" in out
    assert "Registration records in database: 2" in out
    stored = mongo.trainings.find_one({"_id": t["_id"]})
    assert stored["registered"] == 2
    assert stored["registrationsMigrated"] is True
    assert len(stored["attendees"]) == 2
    row = mongo.training_registrations.find_one({"userId": person["_id"]})
    assert row["userData"]["rank"] == "SGT"


def test_sync_registrations_limit(mongo, training_factory, capsys):
    training_factory("One", attendees=[attendee(A)])
    training_factory("Two", attendees=[attendee(B)])

    assert sync_registrations.main(["--limit", "1"]) == 0

    assert "Total trainings processed: 1" in capsys.readouterr().out
    assert mongo.training_registrations.count_documents({}) == 1


def test_fix_attendees_dry_run_leaves_data(mongo, training_factory, person_factory, capsys):
    person = person_factory("Maria", "Santos", rank="SGT")
    t = training_factory(attendees=[attendee(person["_id"], first="maria", last="old")])

    assert fix_training_attendees.main([]) == 0

    out = capsys.readouterr().out
    assert "Attendee records updated: 1" in out
    assert mongo.trainings.find_one({"_id": t["_id"]})["attendees"][0]["userData"]["lastName"] == "old"


def test_fix_attendees_prune_commit(mongo, training_factory, person_factory, capsys):
    person = person_factory("Maria", "Santos", rank="SGT")
    t = training_factory(attendees=[
        attendee(person["_id"], first="maria", last="old"),
        attendee(person["_id"]),
        {"status": "registered", "userData": {"fullName": "No Id"}},
    ])

    assert fix_training_attendees.main(["--prune", "--commit"]) == 0

    out = capsys.readouterr().out
    assert "Invalid attendees removed: 2" in out
    stored = mongo.trainings.find_one({"_id": t["_id"]})
    assert len(stored["attendees"]) == 1
    assert stored["attendees"][0]["userData"]["fullName"] == "Maria Santos"


def test_audit_reports_drift(mongo, training_factory, capsys):
    migrated = training_factory("Migrated", attendees=[attendee(A)], registered=1, registrationsMigrated=True)
    mongo.training_registrations.insert_one({"trainingId": migrated["_id"], "userId": A})
    training_factory("Legacy", attendees=[attendee(A), attendee(A)], registered=2)

    report = {r["title"]: r for r in audit_training_registrations.audit()}

    assert report["Migrated"]["only_embedded"] == 0
    assert report["Legacy"]["attendees_valid"] == 1
    assert report["Legacy"]["only_embedded"] == 1
    assert report["Legacy"]["reasons"] == {"duplicate userId": 1}

    assert audit_training_registrations.main([]) == 0
    out = capsys.readouterr().out
    assert "trainings not migrated: 1" in out
    assert "trainings with drift: 1" in out
    assert mongo.trainings.count_documents({"registrationsMigrated": True}) == 1


def test_audit_database_error(mongo, monkeypatch, capsys):
    def down():
        raise PyMongoError("no primary")

    monkeypatch.setattr(audit_training_registrations, "audit", down)
    assert audit_training_registrations.main([]) == 1
    assert "Database error: no primary" in capsys.readouterr().out


def test_sync_registrations_leaves_incomplete_training_uncached(mongo, training_factory, monkeypatch, capsys):
    import utils.migrate as migrate
    t = training_factory(attendees=[attendee(A), attendee(B)], registered=2)
    real = migrate.upsert_registration

    def flaky(doc):
        if doc["userId"] == B:
            raise PyMongoError("write concern timeout")
        return real(doc)

    monkeypatch.setattr(migrate, "upsert_registration", flaky)
    assert sync_registrations.main(["--rebuild-cache"]) == 0

    out = capsys.readouterr().out
    assert "Upsert errors: 1" in out
    assert "Attendee caches rebuilt: 0" in out
    stored = mongo.trainings.find_one({"_id": t["_id"]})
    assert {a["userId"] for a in stored["attendees"]} == {A, B}
