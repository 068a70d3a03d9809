from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.pool import StaticPool

from app.core.errors import ConflictError, DataAccessError, NotFoundError
from app.db.base import Base
from app.db.database import Database, FindOptions, JoinSpec
from app.db.filters import Eq, In, Range, TextSearch
from app.db.session import build_engine


@pytest.fixture()
def db():
    engine = build_engine(url="sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    database = Database(engine)
    yield database
    database.close()


def _organization(db: Database, name: str = "Acme") -> dict:
    return db.create("organizations", {"name": name, "slug": name.lower(), "settings": {}})


def _user(db: Database, username: str) -> dict:
    return db.create(
        "users",
        {
            "username": username,
            "email": f"{username}@example.com",
            "password_hash": "x",
            "first_name": username.title(),
            "last_name": "Tester",
            "preferences": {},
        },
    )


def _task(db: Database, organization: dict, user: dict, title: str, **fields) -> dict:
    return db.create(
        "tasks",
        {
            "organization_id": organization["id"],
            "created_by": user["id"],
            "title": title,
            "tags": [],
            "checklist": [],
            "metadata": {},
            **fields,
        },
    )


def test_create_fills_id_timestamps_and_defaults(db):
    organization = _organization(db)

    assert len(organization["id"]) == 36
    assert organization["created_at"] is not None
    assert organization["updated_at"] is not None
    assert organization["is_active"] is True
    assert organization["version"] == 1


def test_unknown_collection_or_column_is_a_data_access_error(db):
    with pytest.raises(DataAccessError):
        db.find_all("widgets")
    with pytest.raises(DataAccessError):
        db.create("organizations", {"name": "x", "slug": "x", "settings": {}, "colour": "red"})
    with pytest.raises(DataAccessError):
        db.find_all("organizations", [Eq("colour", "red")])
    with pytest.raises(DataAccessError):
        db.find_all("organizations", options=FindOptions(order_by="colour"))


def test_unique_violation_maps_to_conflict(db):
    _user(db, "ada")
    with pytest.raises(ConflictError):
        _user(db, "ada")


def test_filters(db):
    organization = _organization(db)
    user = _user(db, "ada")
    now = datetime.now(timezone.utc)
    _task(db, organization, user, "Pack boxes", priority="high", due_date=now + timedelta(days=1))
    _task(db, organization, user, "Ship boxes", priority="low", due_date=now + timedelta(days=5))
    _task(db, organization, user, "File invoices", priority="low", description="100% done")

    assert len(db.find_all("tasks", [Eq("priority", "low")])) == 2
    assert len(db.find_all("tasks", {"priority": ["high", "urgent"]})) == 1
    assert len(db.find_all("tasks", {"priority": None})) == 3
    assert [row["title"] for row in db.find_all("tasks", [Eq("due_date", None)])] == ["File invoices"]
    assert db.find_all("tasks", [In("priority", [])]) == []

    soon = db.find_all("tasks", [Range("due_date", lte=now + timedelta(days=2))])
    assert [row["title"] for row in soon] == ["Pack boxes"]

    boxes = db.find_all("tasks", [TextSearch("BOXES", ["title", "description"])])
    assert len(boxes) == 2
    # LIKE wildcards in the term are matched literally.
    assert [row["title"] for row in db.search("tasks", "100%", ["description"])] == ["File invoices"]
    assert len(db.find_all("tasks", [TextSearch("  ", ["title"])])) == 3


def test_ordering_pagination_and_counts(db):
    organization = _organization(db)
    user = _user(db, "ada")
    for title in ("b", "a", "d", "c"):
        _task(db, organization, user, title, status="completed" if title in "ab" else "pending")

    page = db.find_all("tasks", options=FindOptions(order_by="title", ascending=True, limit=2, offset=1))
    assert [row["title"] for row in page] == ["b", "c"]
    assert db.count("tasks") == 4
    assert db.count("tasks", {"status": "completed"}) == 2
    assert db.count_by("tasks", "status") == {"completed": 2, "pending": 2}
    assert db.find_one("tasks", [Eq("title", "zzz")]) is None


def test_joins_embed_related_rows(db):
    organization = _organization(db)
    creator = _user(db, "ada")
    assignee = _user(db, "bola")
    _task(db, organization, creator, "Assigned", assigned_to=assignee["id"])
    _task(db, organization, creator, "Unassigned")

    rows = db.find_with_joins(
        "tasks",
        [
            JoinSpec("users", ("username",), via="assigned_to", alias="assignee"),
            JoinSpec("users", ("username",), via="created_by", alias="creator"),
            JoinSpec("organizations", ("name",)),
        ],
        options=FindOptions(order_by="title", ascending=True),
    )
    assert rows[0]["assignee"] == {"id": assignee["id"], "username": "bola"}
    assert rows[0]["creator"]["username"] == "ada"
    assert rows[0]["organizations"]["name"] == "Acme"
    assert rows[1]["assignee"] is None

    with pytest.raises(DataAccessError):
        db.find_with_joins("tasks", [JoinSpec("users")])


def test_update_with_version_check(db):
    organization = _organization(db)

    updated = db.update("organizations", organization["id"], {"name": "Acme Ltd"}, expected_version=1)
    assert updated["version"] == 2
    assert updated["name"] == "Acme Ltd"

    with pytest.raises(ConflictError):
        db.update("organizations", organization["id"], {"name": "Stale"}, expected_version=1)
    with pytest.raises(NotFoundError):
        db.update("organizations", "missing", {"name": "x"})

    # Callers cannot overwrite bookkeeping columns.
    again = db.update("organizations", organization["id"], {"version": 99, "id": "other"})
    assert again["version"] == 3
    assert again["id"] == organization["id"]


def test_delete_and_delete_where(db):
    organization = _organization(db)
    user = _user(db, "ada")
    first = _task(db, organization, user, "one")
    _task(db, organization, user, "two")

    removed = db.delete("tasks", first["id"])
    assert removed["title"] == "one"
    with pytest.raises(NotFoundError):
        db.delete("tasks", first["id"])

    assert db.delete_where("tasks", [Eq("organization_id", organization["id"])]) == 1
    with pytest.raises(DataAccessError):
        db.delete_where("tasks", [])


def test_transaction_rolls_back_on_error(db):
    organization = _organization(db)

    with pytest.raises(ConflictError):
        with db.transaction() as tx:
            tx.update("organizations", organization["id"], {"name": "Renamed"})
            tx.create("organizations", {"name": "Dup", "slug": organization["slug"], "settings": {}})

    assert db.find_by_id("organizations", organization["id"])["name"] == "Acme"


def test_bulk_create_preserves_order(db):
    organization = _organization(db)
    user = _user(db, "ada")
    rows = db.bulk_create(
        "tasks",
        [
            {"organization_id": organization["id"], "created_by": user["id"], "title": title,
             "tags": [], "checklist": [], "metadata": {}}
            for title in ("x", "y", "z")
        ],
    )
    assert [row["title"] for row in rows] == ["x", "y", "z"]
    assert db.bulk_create("tasks", []) == []


def test_sequences_are_per_organization_and_monotonic(db):
    first = _organization(db, "Acme")
    second = _organization(db, "Beta")

    assert [db.next_sequence(first["id"], "customer") for _ in range(3)] == [1, 2, 3]
    assert db.next_sequence(second["id"], "customer") == 1
    assert db.next_sequence(first["id"], "order:261019") == 1


def test_ping(db):
    assert db.ping() is True
