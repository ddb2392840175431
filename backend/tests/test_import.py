from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from bulkimport.models import Book, Group, Topic, widgets
from bulkimport.services.importers import (
    ExecutionFailure,
    ImportOptions,
    RecordTooLarge,
    SchemaMismatch,
    backend_for,
    bulk_import,
)
from conftest import FIXED_NOW, build_topics

COLUMNS = ["title", "author_name"]
VALID = [("LDAP", "Jerry Carter"), ("Rails Recipes", "Chad Fowler")]
INVALID = [("The RSpec Book", ""), ("Agile+UX", "")]


def count(db, target) -> int:
    return db.scalar(select(func.count()).select_from(target))


def test_returns_number_of_inserts(db, backend) -> None:
    result = bulk_import(Topic, build_topics(3), backend=backend)
    assert result.num_inserts == 3

    result = bulk_import(Topic, build_topics(7), backend=backend)
    assert result.num_inserts == 7
    assert count(db, Topic) == 10


def test_raw_rows_with_default_options(db, backend) -> None:
    rows = [(f"Title {i}", f"Author {i}") for i in range(10)]
    result = bulk_import(Topic, rows, COLUMNS, backend=backend)
    assert result.num_inserts == 10
    assert result.failed_instances == []
    assert count(db, Topic) == 10


# ---- validation ----

@pytest.mark.parametrize("rows", [VALID, INVALID])
def test_validation_off_imports_everything(db, backend, rows) -> None:
    result = bulk_import(Topic, rows, COLUMNS, backend=backend, validate=False)
    assert result.num_inserts == 2
    assert result.failed_instances == []
    assert count(db, Topic) == 2


def test_validation_on_imports_valid_rows(db, backend) -> None:
    result = bulk_import(Topic, VALID, COLUMNS, backend=backend, validate=True)
    assert result.num_inserts == 2
    assert count(db, Topic) == 2


def test_validation_on_skips_invalid_rows(db, backend) -> None:
    result = bulk_import(Topic, INVALID, COLUMNS, backend=backend, validate=True)
    assert result.num_inserts == 0
    assert result.num_batches == 0
    assert count(db, Topic) == 0


def test_failed_instances_are_model_instances(backend) -> None:
    result = bulk_import(Topic, INVALID, COLUMNS, backend=backend, validate=True)
    assert len(result.failed_instances) == len(INVALID)
    for inst, (title, _author) in zip(result.failed_instances, INVALID):
        assert isinstance(inst, Topic)
        assert inst.title == title
    assert [r.index for r in result.rejections] == [0, 1]
    assert all(any(reason.startswith("author_name") for reason in r.reasons) for r in result.rejections)


def test_mixed_valid_and_invalid_rows(db, backend) -> None:
    result = bulk_import(Topic, VALID + INVALID, COLUMNS, backend=backend, validate=True)
    assert result.num_inserts == 2
    assert result.num_inserts + len(result.failed_instances) == 4
    assert [r.index for r in result.rejections] == [2, 3]
    invalid_titles = [t for t, _ in INVALID]
    assert count(db, select(Topic).where(Topic.title.in_(invalid_titles)).subquery()) == 0


# ---- model instances ----

def test_imports_instances_by_their_attributes(db, backend) -> None:
    result = bulk_import(Topic, build_topics(9), backend=backend)
    assert result.num_inserts == 9

    topic = Topic(title="The RSpec Book", author_name="David Chelimsky")
    bulk_import(Topic, [topic], backend=backend)
    found = db.scalars(
        select(Topic).where(Topic.title == "The RSpec Book", Topic.author_name == "David Chelimsky")
    ).one_or_none()
    assert found is not None


def test_does_not_overwrite_existing_records(db, backend) -> None:
    topic = Topic(title="foobar", author_name="Someone")
    db.add(topic)
    db.commit()
    before = count(db, Topic)

    topic.title = "baz"
    with pytest.raises(ExecutionFailure) as exc:
        bulk_import(Topic, [topic], backend=backend)
    assert exc.value.num_committed == 0

    assert count(db, Topic) == before
    db.refresh(topic)
    assert topic.title == "foobar"


def test_instances_with_validation(db, backend) -> None:
    assert bulk_import(Topic, build_topics(9), backend=backend, validate=True).num_inserts == 9

    invalid = build_topics(7, author_name="")
    result = bulk_import(Topic, invalid, backend=backend, validate=True)
    assert result.num_inserts == 0
    assert result.failed_instances == invalid
    assert count(db, Topic) == 9


def test_invalid_instances_import_without_validation(db, backend) -> None:
    result = bulk_import(Topic, build_topics(7, author_name=""), backend=backend, validate=False)
    assert result.num_inserts == 7
    assert count(db, Topic) == 7


def test_columns_with_instances_only_write_listed_columns(db, backend) -> None:
    topics = build_topics(2)
    topics[0].author_email_address = "zach.dennis@gmail.com"

    result = bulk_import(Topic, topics, [Topic.author_name, "title"], backend=backend)
    assert result.num_inserts == 2

    for t in topics:
        assert db.scalars(select(Topic).where(Topic.author_name == t.author_name)).one_or_none()
    assert db.scalars(
        select(Topic).where(Topic.author_email_address == "zach.dennis@gmail.com")
    ).first() is None


def test_instances_leaving_a_defaulted_column_unset_get_the_default(db, backend) -> None:
    books = [
        Book(title="LDAP", author_name="Jerry Carter", for_sale=False),
        Book(title="Rails Recipes", author_name="Chad Fowler"),
    ]
    result = bulk_import(Book, books, backend=backend)
    assert result.num_inserts == 2

    stored = db.execute(select(Book.title, Book.for_sale).order_by(Book.id)).all()
    assert [tuple(r) for r in stored] == [("LDAP", False), ("Rails Recipes", True)]


def test_instances_leaving_a_nullable_column_unset_store_null(db, backend) -> None:
    topics = build_topics(2)
    topics[0].author_email_address = "zach.dennis@gmail.com"

    result = bulk_import(Topic, topics, backend=backend)
    assert result.num_inserts == 2

    stored = db.execute(select(Topic.title, Topic.author_email_address).order_by(Topic.id)).all()
    assert [tuple(r) for r in stored] == [
        ("Topic 0", "zach.dennis@gmail.com"),
        ("Topic 1", None),
    ]


# ---- timestamps ----

def test_sets_all_timestamp_columns(db, backend) -> None:
    result = bulk_import(Book, [("LDAP", "Big Bird", "Del Rey")], ["title", "author_name", "publisher"], backend=backend)
    assert result.num_inserts == 1

    book = db.scalars(select(Book)).one()
    expected = FIXED_NOW.replace(tzinfo=None)
    for col in ("created_at", "created_on", "updated_at", "updated_on"):
        assert getattr(book, col).replace(tzinfo=None) == expected


def test_timestamps_share_one_instant(db) -> None:
    calls = []

    def ticking_clock(tz):
        calls.append(tz)
        return FIXED_NOW + timedelta(seconds=len(calls))

    backend = backend_for(db, clock=ticking_clock)
    rows = [(f"Book {i}", "Author") for i in range(5)]
    bulk_import(Book, rows, ["title", "author_name"], backend=backend, batch_byte_limit=600)

    assert len(calls) == 1
    stamps = {b.created_at for b in db.scalars(select(Book))}
    assert len(stamps) == 1


def test_timestamps_respect_time_zone(db) -> None:
    eastern = timezone(timedelta(hours=-5))
    backend = backend_for(db, timezone=eastern, clock=lambda tz: FIXED_NOW.astimezone(tz))
    bulk_import(Book, [("LDAP", "Big Bird")], ["title", "author_name"], backend=backend)

    book = db.scalars(select(Book)).one()
    assert book.created_at.replace(tzinfo=None) == datetime(2024, 3, 1, 7, 30)
    assert book.updated_on.replace(tzinfo=None) == datetime(2024, 3, 1, 7, 30)


def test_caller_supplied_timestamps_are_kept(db, backend) -> None:
    supplied = datetime(2020, 1, 1, 8, 0)
    bulk_import(Book, [("LDAP", "Big Bird", supplied)], ["title", "author_name", "created_at"], backend=backend)

    book = db.scalars(select(Book)).one()
    assert book.created_at.replace(tzinfo=None) == supplied
    assert book.updated_at.replace(tzinfo=None) == FIXED_NOW.replace(tzinfo=None)


def test_timestamps_can_be_disabled(db, backend) -> None:
    bulk_import(Book, [("LDAP", "Big Bird")], ["title", "author_name"], backend=backend, timestamps=False)
    book = db.scalars(select(Book)).one()
    assert book.created_at is None
    assert book.updated_on is None


# ---- reserved words ----

def test_reserved_word_columns(db, backend) -> None:
    result = bulk_import(Group, [Group(order="superx")], backend=backend)
    assert result.num_inserts == 1
    assert db.scalars(select(Group)).one().order == "superx"


# ---- batching through the pipeline ----

def _widget_rows(n: int) -> list[tuple]:
    return [(i, "abcde") for i in range(1, n + 1)]


def test_splits_into_statements_under_the_budget(db, backend) -> None:
    cols = ["w_id", "data"]
    _, overhead = backend.render_insert(widgets, cols, [])
    _, one = backend.render_insert(widgets, cols, [{"w_id": 1, "data": "abcde"}])
    size = one - overhead

    budget = overhead + 2 * size + 1  # room for exactly two value tuples
    result = bulk_import(widgets, _widget_rows(5), cols, backend=backend, batch_byte_limit=budget)
    assert result.num_inserts == 5
    assert result.num_batches == 3
    assert [r.w_id for r in db.execute(select(widgets).order_by(widgets.c.w_id))] == [1, 2, 3, 4, 5]


def test_without_a_limit_the_backend_maximum_is_used(backend) -> None:
    result = bulk_import(widgets, _widget_rows(50), ["w_id", "data"], backend=backend)
    assert result.num_inserts == 50
    assert result.num_batches == 1


def test_record_too_large_fails_before_any_insert(db, backend) -> None:
    rows = [(1, "ok"), (2, "x" * 500)]
    with pytest.raises(RecordTooLarge) as exc:
        bulk_import(widgets, rows, ["w_id", "data"], backend=backend, batch_byte_limit=100)
    assert exc.value.index == 1
    assert count(db, widgets) == 0


def test_too_large_index_refers_to_the_input_row(db, backend) -> None:
    rows = [("", "x"), ("fine", "Author"), ("big", "y" * 500)]
    with pytest.raises(RecordTooLarge) as exc:
        bulk_import(Topic, rows, COLUMNS, backend=backend, validate=True, batch_byte_limit=200, timestamps=False)
    assert exc.value.index == 2


def test_execution_failure_keeps_earlier_batches(db, backend) -> None:
    cols = ["w_id", "data"]
    _, overhead = backend.render_insert(widgets, cols, [])
    _, one = backend.render_insert(widgets, cols, [{"w_id": 1, "data": "abcde"}])

    rows = [(1, "abcde"), (2, "abcde"), (1, "abcde")]
    with pytest.raises(ExecutionFailure) as exc:
        bulk_import(widgets, rows, cols, backend=backend, batch_byte_limit=one)
    assert exc.value.batch_index == 2
    assert exc.value.num_committed == 2
    assert count(db, widgets) == 2
    assert overhead < one


def test_duplicate_keys_across_calls_raise(db, backend) -> None:
    bulk_import(widgets, [(7, "first")], ["w_id", "data"], backend=backend)
    with pytest.raises(ExecutionFailure):
        bulk_import(widgets, [(7, "second")], ["w_id", "data"], backend=backend)
    assert db.execute(select(widgets.c.data).where(widgets.c.w_id == 7)).scalar_one() == "first"


def test_return_ids(db, backend) -> None:
    result = bulk_import(Topic, build_topics(3), backend=backend, return_ids=True)
    assert result.num_inserts == 3
    if db.get_bind().dialect.insert_returning:
        assert sorted(result.ids) == sorted(db.scalars(select(Topic.id)).all())
    else:
        assert result.ids == ()


# ---- input shape ----

def test_arity_mismatch_fails_fast(db, backend) -> None:
    with pytest.raises(SchemaMismatch):
        bulk_import(Topic, [("a", "b"), ("only one",)], COLUMNS, backend=backend)
    assert count(db, Topic) == 0


def test_unknown_column(backend) -> None:
    with pytest.raises(SchemaMismatch):
        bulk_import(Topic, [("a", "b")], ["title", "nope"], backend=backend)


def test_raw_rows_need_columns(backend) -> None:
    with pytest.raises(SchemaMismatch):
        bulk_import(Topic, [("a", "b")], backend=backend)


def test_mixed_instance_types(backend) -> None:
    with pytest.raises(SchemaMismatch):
        bulk_import(Topic, [Topic(title="a", author_name="b"), Book(title="c", author_name="d")], backend=backend)


def test_empty_input(backend) -> None:
    result = bulk_import(Topic, [], backend=backend)
    assert result.num_inserts == 0
    assert result.failed_instances == []


def test_unknown_option(backend) -> None:
    with pytest.raises(TypeError):
        bulk_import(Topic, build_topics(1), backend=backend, upsert=True)


@pytest.mark.parametrize("limit", [0, -10, 1.5, True])
def test_batch_byte_limit_must_be_positive(backend, limit) -> None:
    with pytest.raises(ValueError):
        bulk_import(Topic, VALID, COLUMNS, backend=backend, batch_byte_limit=limit)
    with pytest.raises(ValueError):
        ImportOptions(batch_byte_limit=limit)


def test_options_object(backend) -> None:
    opts = ImportOptions(validate=False, timestamps=False)
    result = bulk_import(Topic, INVALID, COLUMNS, backend=backend, options=opts)
    assert result.num_inserts == 2


def test_warns_when_session_has_pending_changes(db, backend, caplog) -> None:
    db.add(Topic(title="pending", author_name="Someone"))
    with caplog.at_level("WARNING", logger="bulkimport.services.importers.backend"):
        bulk_import(Topic, VALID, COLUMNS, backend=backend)
    assert "pending changes" in caplog.text
