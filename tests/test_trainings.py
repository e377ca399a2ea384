"""Request handlers: authorization, self-correcting reads, live register/cancel."""
import pytest
from bson import ObjectId
from pymongo.errors import PyMongoError

import utils.migrate as migrate
from tests.conftest import attendee
from utils.errors import AuthorizationError, NotMigratedError, RegistrationError, TrainingNotFound
from utils.trainings import (
    cancel_registration,
    get_registration_counts,
    get_training_attendees,
    percentage,
    register_for_training,
    run_attendee_cleanup,
    run_count_sync,
    run_registration_migration,
)

ADMIN = {"_id": str(ObjectId()), "email": "admin@afp.mil.ph", "role": "administrator"}


def _session(person):
    return {"_id": str(person["_id"]), "email": person["email"], "role": person.get("role", "reservist")}


# =============================================================================
# Authorization
# =============================================================================

def test_anonymous_caller_is_rejected(mongo, training_factory):
    t = training_factory()
    with pytest.raises(AuthorizationError):
        get_training_attendees(None, t["_id"])
    with pytest.raises(AuthorizationError):
        register_for_training({}, t["_id"])


@pytest.mark.parametrize("handler", [run_registration_migration, run_attendee_cleanup, run_count_sync])
def test_batch_triggers_need_admin_role(handler, mongo, training_factory):
    t = training_factory(attendees=[attendee(ObjectId())], registered=9)
    staff = {"_id": str(ObjectId()), "email": "staff@afp.mil.ph", "role": "reservist"}

    with pytest.raises(AuthorizationError):
        handler(staff)
    assert mongo.trainings.find_one({"_id": t["_id"]})["registered"] == 9
    assert mongo.training_registrations.count_documents({}) == 0


def test_role_check_is_case_insensitive(mongo):
    assert run_count_sync({**ADMIN, "role": "Director"}, source="attendees")["processed"] == 0


# =============================================================================
# Reads
# =============================================================================

def test_percentage_rounds_half_up():
    assert percentage(1, 8) == 13
    assert percentage(2, 3) == 67
    assert percentage(1, 2) == 50
    assert percentage(5, 0) == 0
    assert percentage(5, None) == 0


def test_attendee_list_is_validated_refreshed_and_fixes_counter(mongo, training_factory, person_factory):
    maria = person_factory("Maria", "Santos", rank="SGT", company="Bravo")
    b = ObjectId()
    t = training_factory(attendees=[
        attendee(maria["_id"], "registered", first="maria", last="old"),
        attendee(b, "completed"),
        attendee(maria["_id"], "attended"),
    ], registered=3)

    data = get_training_attendees(ADMIN, t["_id"], source="attendees")

    assert [a["userId"] for a in data["attendees"]] == [maria["_id"], b]
    assert data["attendees"][0]["userData"]["fullName"] == "Maria Santos"
    assert data["attendees"][0]["userData"]["rank"] == "SGT"
    assert data["removed"] == [{"index": 2, "userId": str(maria["_id"]), "reason": "duplicate userId"}]
    assert data["registered"] == 2
    assert data["corrected"] is True
    stored = mongo.trainings.find_one({"_id": t["_id"]})
    assert stored["registered"] == 2
    # snapshots are returned, not persisted
    assert stored["attendees"][0]["userData"]["lastName"] == "old"


def test_attendee_list_migrates_first_when_counting_registrations(mongo, training_factory):
    a, b = ObjectId(), ObjectId()
    t = training_factory(attendees=[attendee(a), attendee(b), attendee(a)], registered=7)

    data = get_training_attendees(ADMIN, str(t["_id"]), source="registrations")

    assert data["registered"] == 2
    assert mongo.training_registrations.count_documents({"trainingId": t["_id"]}) == 2
    assert mongo.trainings.find_one({"_id": t["_id"]})["registrationsMigrated"] is True


def test_non_admin_read_does_not_migrate(mongo, training_factory, person_factory):
    a, b = ObjectId(), ObjectId()
    t = training_factory(attendees=[attendee(a), attendee(b), attendee(a)], registered=7, capacity=4)
    reader = _session(person_factory())

    rows = get_registration_counts(reader, source="registrations")
    single = get_registration_counts(reader, t["_id"], source="registrations")
    data = get_training_attendees(reader, t["_id"], source="registrations")

    assert rows[0]["registered"] == 2
    assert single == {"count": 2, "capacity": 4, "percentage": 50}
    assert (data["registered"], data["corrected"]) == (2, False)
    assert mongo.training_registrations.count_documents({}) == 0
    stored = mongo.trainings.find_one({"_id": t["_id"]})
    assert "registrationsMigrated" not in stored
    assert stored["registered"] == 7


def test_unknown_training(mongo):
    with pytest.raises(TrainingNotFound):
        get_training_attendees(ADMIN, ObjectId())
    with pytest.raises(TrainingNotFound):
        get_registration_counts(ADMIN, "not-an-id")


def test_single_training_count(mongo, training_factory):
    t = training_factory(capacity=3, registered=0, registrationsMigrated=True)
    for _ in range(2):
        mongo.training_registrations.insert_one({"trainingId": t["_id"], "userId": ObjectId()})

    res = get_registration_counts(ADMIN, t["_id"], source="registrations")

    assert res == {"count": 2, "capacity": 3, "percentage": 67}
    assert mongo.trainings.find_one({"_id": t["_id"]})["registered"] == 2


def test_all_training_counts(mongo, training_factory):
    a = ObjectId()
    full = training_factory("Full", capacity=1, attendees=[attendee(a)], registered=0)
    open_ = training_factory("Open", registered=4)

    res = get_registration_counts(ADMIN, source="attendees")

    by_title = {r["title"]: r for r in res}
    assert by_title["Full"] == {"trainingId": full["_id"], "title": "Full", "registered": 1,
                                "capacity": 1, "percentage": 100}
    assert by_title["Open"]["registered"] == 0
    assert by_title["Open"]["percentage"] == 0
    assert mongo.trainings.find_one({"_id": open_["_id"]})["registered"] == 0


# =============================================================================
# Live register / cancel
# =============================================================================

def test_register_creates_row_and_rebuilds_cache(mongo, training_factory, person_factory):
    existing = ObjectId()
    t = training_factory(attendees=[attendee(existing)], registered=1, capacity=5)
    person = person_factory("Ana", "Lim", rank="CPL", company="Charlie")

    res = register_for_training(_session(person), str(t["_id"]))

    assert res["registered"] == 2
    row = mongo.training_registrations.find_one({"trainingId": t["_id"], "userId": person["_id"]})
    assert row["status"] == "registered"
    assert row["userData"]["fullName"] == "Ana Lim"
    assert row["userData"]["rank"] == "CPL"
    stored = mongo.trainings.find_one({"_id": t["_id"]})
    assert stored["registered"] == 2
    assert {a["userId"] for a in stored["attendees"]} == {existing, person["_id"]}


def test_register_twice_is_refused(mongo, training_factory, person_factory):
    t = training_factory()
    person = person_factory()
    register_for_training(_session(person), t["_id"])

    with pytest.raises(RegistrationError, match="already registered"):
        register_for_training(_session(person), t["_id"])
    assert mongo.training_registrations.count_documents({}) == 1


def test_register_refused_when_full(mongo, training_factory, person_factory):
    t = training_factory(attendees=[attendee(ObjectId())], capacity=1)
    with pytest.raises(RegistrationError, match="capacity"):
        register_for_training(_session(person_factory()), t["_id"])


@pytest.mark.parametrize("status", ["completed", "cancelled"])
def test_register_refused_for_closed_training(status, mongo, training_factory, person_factory):
    t = training_factory(status=status)
    with pytest.raises(RegistrationError):
        register_for_training(_session(person_factory()), t["_id"])
    assert mongo.training_registrations.count_documents({}) == 0


def test_register_unknown_user(mongo, training_factory):
    t = training_factory()
    ghost = {"_id": str(ObjectId()), "email": "ghost@afp.mil.ph", "role": "reservist"}
    with pytest.raises(RegistrationError, match="User not found"):
        register_for_training(ghost, t["_id"])


def test_cancel_removes_row_and_updates_counter(mongo, training_factory, person_factory):
    t = training_factory(attendees=[attendee(ObjectId())], registered=1)
    person = person_factory()
    register_for_training(_session(person), t["_id"])

    res = cancel_registration(_session(person), t["_id"])

    assert res["registered"] == 1
    assert mongo.training_registrations.count_documents({"userId": person["_id"]}) == 0
    stored = mongo.trainings.find_one({"_id": t["_id"]})
    assert stored["registered"] == 1
    assert person["_id"] not in {a["userId"] for a in stored["attendees"]}


def test_cancel_when_not_registered(mongo, training_factory, person_factory):
    t = training_factory()
    with pytest.raises(RegistrationError, match="not registered"):
        cancel_registration(_session(person_factory()), t["_id"])


def test_register_refused_while_migration_incomplete(mongo, training_factory, person_factory, monkeypatch):
    a, b = ObjectId(), ObjectId()
    t = training_factory(attendees=[attendee(a), attendee(b)], registered=2)
    real = migrate.upsert_registration

    def flaky(doc):
        if doc["userId"] == b:
            raise PyMongoError("write concern timeout")
        return real(doc)

    monkeypatch.setattr(migrate, "upsert_registration", flaky)
    person = person_factory()

    with pytest.raises(NotMigratedError):
        register_for_training(_session(person), t["_id"])

    stored = mongo.trainings.find_one({"_id": t["_id"]})
    assert "registrationsMigrated" not in stored
    assert {x["userId"] for x in stored["attendees"]} == {a, b}
    assert stored["registered"] == 2
    assert mongo.training_registrations.count_documents({"userId": person["_id"]}) == 0

    # once the store recovers the next write completes the migration
    monkeypatch.setattr(migrate, "upsert_registration", real)
    assert register_for_training(_session(person), t["_id"])["registered"] == 3
    rows = {r["userId"] for r in mongo.training_registrations.find({"trainingId": t["_id"]})}
    assert rows == {a, b, person["_id"]}


# =============================================================================
# Admin batch triggers
# =============================================================================

def test_run_registration_migration(mongo, training_factory, person_factory):
    person = person_factory("Maria", "Santos")
    training_factory("One", attendees=[attendee(person["_id"]), attendee(person["_id"])], registered=2)
    training_factory("Two", attendees=[{"userId": ObjectId(), "userData": {"email": "x.y@mail.com", "fullName": "N/A"}}])

    totals = run_registration_migration(ADMIN)

    assert totals["processed"] == 2
    assert totals["updated"] == 2
    assert totals["migrated"] == 2
    assert totals["created"] == 2
    assert totals["missing_personnel"] == 1


def test_run_attendee_cleanup_prunes(mongo, training_factory, person_factory):
    person = person_factory("Maria", "Santos", rank="SGT")
    t = training_factory(attendees=[
        attendee(person["_id"], first="maria", last="x"),
        attendee(person["_id"]),
        attendee(ObjectId(), "invited"),
    ])

    totals = run_attendee_cleanup(ADMIN, prune=True)

    assert totals["updated"] == 1
    assert totals["removed"] == 2
    assert totals["reasons"] == {"duplicate userId": 1, "invalid status": 1}
    stored = mongo.trainings.find_one({"_id": t["_id"]})
    assert len(stored["attendees"]) == 1
    assert stored["attendees"][0]["userData"]["rank"] == "SGT"


def test_run_count_sync(mongo, training_factory):
    training_factory(attendees=[attendee(ObjectId())], registered=4)
    res = run_count_sync(ADMIN, source="attendees")
    assert (res["processed"], res["updated"]) == (1, 1)
