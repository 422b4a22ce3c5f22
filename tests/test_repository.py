import asyncio
import time
from datetime import datetime, timedelta, timezone

import pytest

from clinicalforge.db import CommitDeadline
from clinicalforge.errors import (
    ConcurrentModification,
    InvalidStatusTransition,
    PermissionDenied,
    StorageTimeout,
    StorageUnavailable,
)
from clinicalforge.models.enums import FormType, SubmissionStatus
from clinicalforge.services.builder import build_submission
from clinicalforge.services.repository import SubmissionRepository

COMPREHENSIVE = FormType.COMPREHENSIVE_PARAMETER_VALIDATION
BASE = datetime(2025, 1, 10, tzinfo=timezone.utc)


def _document(payload, owner="uid-1", at=BASE, **kwargs):
    return build_submission(owner, COMPREHENSIVE, payload, now=at, **kwargs)


async def test_create_and_get_by_id(repository, comprehensive_payload) -> None:
    document = _document(comprehensive_payload)
    submission_id = await repository.create(document)

    stored = await repository.get_by_id(submission_id)
    assert stored is not None
    assert stored.submission_id == document.submission_id
    assert stored.payload == document.payload
    assert stored.validation == document.validation
    assert stored.search_index == document.search_index
    assert stored.submitted_at == BASE


async def test_get_by_id_returns_none_when_missing(repository) -> None:
    assert await repository.get_by_id("does-not-exist") is None


async def test_list_by_owner_is_newest_first(repository, comprehensive_payload) -> None:
    for days in (0, 3, 1):
        await repository.create(_document(comprehensive_payload, at=BASE + timedelta(days=days)))
    await repository.create(_document(comprehensive_payload, owner="uid-2"))

    documents = await repository.list_by_owner("uid-1")
    assert [doc.submitted_at for doc in documents] == [
        BASE + timedelta(days=3),
        BASE + timedelta(days=1),
        BASE,
    ]
    assert len(await repository.list_by_owner("uid-1", limit=2)) == 2


async def test_keyword_search_is_exact_token(repository, comprehensive_payload) -> None:
    comprehensive_payload["diseaseOverview"]["diseaseName"]["clinical"] = "Chronic Kidney Disease"
    document = _document(comprehensive_payload)
    await repository.create(document)

    found = await repository.search_by_keyword("kidney")
    assert [doc.submission_id for doc in found] == [document.submission_id]
    assert await repository.search_by_keyword("kidneys") == []


async def test_list_by_status_and_disease_type(repository, comprehensive_payload) -> None:
    document = _document(comprehensive_payload)
    await repository.create(document)

    drafts = await repository.list_by_status(SubmissionStatus.DRAFT)
    assert [doc.submission_id for doc in drafts] == [document.submission_id]
    assert await repository.list_by_status(SubmissionStatus.APPROVED) == []
    assert len(await repository.list_by_disease_type("Chronic")) == 1
    assert await repository.list_by_disease_type("acute") == []


async def test_status_walks_forward(repository, comprehensive_payload) -> None:
    document = _document(comprehensive_payload)
    await repository.create(document)

    submitted = await repository.update_status(document.submission_id, SubmissionStatus.SUBMITTED, "uid-1")
    assert submitted.status == SubmissionStatus.SUBMITTED
    assert submitted.metadata.status == SubmissionStatus.SUBMITTED
    assert submitted.revision == 2

    reviewing = await repository.update_status(document.submission_id, SubmissionStatus.IN_REVIEW, "admin")
    assert reviewing.metadata.last_modified_by == "admin"
    approved = await repository.update_status(document.submission_id, SubmissionStatus.APPROVED, "admin")
    assert approved.revision == 4
    assert approved.validation == document.validation

    listed = await repository.list_by_status(SubmissionStatus.APPROVED)
    assert [doc.submission_id for doc in listed] == [document.submission_id]


async def test_status_cannot_skip_or_go_back(repository, comprehensive_payload) -> None:
    document = _document(comprehensive_payload)
    await repository.create(document)

    with pytest.raises(InvalidStatusTransition):
        await repository.update_status(document.submission_id, SubmissionStatus.APPROVED, "admin")
    await repository.update_status(document.submission_id, SubmissionStatus.SUBMITTED, "uid-1")
    with pytest.raises(InvalidStatusTransition):
        await repository.update_status(document.submission_id, SubmissionStatus.DRAFT, "admin")


async def test_compare_and_swap_rejects_stale_revision(repository, comprehensive_payload) -> None:
    document = _document(comprehensive_payload)
    await repository.create(document)

    await repository.update_status(
        document.submission_id, SubmissionStatus.SUBMITTED, "uid-1", expected_revision=1
    )
    with pytest.raises(ConcurrentModification):
        await repository.update_status(
            document.submission_id, SubmissionStatus.IN_REVIEW, "admin", expected_revision=1
        )

    stored = await repository.get_by_id(document.submission_id)
    assert stored.status == SubmissionStatus.SUBMITTED
    assert stored.revision == 2


async def test_update_draft_replaces_keywords(repository, comprehensive_payload) -> None:
    document = _document(comprehensive_payload)
    await repository.create(document)
    assert len(await repository.search_by_keyword("diabetes")) == 1

    comprehensive_payload["diseaseOverview"]["diseaseName"]["clinical"] = "Bronchial Asthma"
    updated = await repository.update_draft(
        document.submission_id, comprehensive_payload, "uid-1", expected_revision=1
    )

    assert updated.revision == 2
    assert updated.search_index.disease_name == "Bronchial Asthma"
    assert await repository.search_by_keyword("diabetes") == []
    assert len(await repository.search_by_keyword("asthma")) == 1


async def test_update_draft_moves_disease_type(repository, comprehensive_payload) -> None:
    document = _document(comprehensive_payload)
    await repository.create(document)
    assert len(await repository.list_by_disease_type("metabolic")) == 1

    comprehensive_payload["diseaseOverview"]["diseaseType"] = {"primary": "acute", "secondary": ["Infectious"]}
    await repository.update_draft(document.submission_id, comprehensive_payload, "uid-1")

    assert await repository.list_by_disease_type("chronic") == []
    assert await repository.list_by_disease_type("metabolic") == []
    assert len(await repository.list_by_disease_type("acute")) == 1
    assert len(await repository.list_by_disease_type(" Infectious ")) == 1


async def test_update_draft_guards(repository, comprehensive_payload) -> None:
    document = _document(comprehensive_payload)
    await repository.create(document)

    with pytest.raises(PermissionDenied):
        await repository.update_draft(document.submission_id, comprehensive_payload, "uid-2")
    await repository.update_status(document.submission_id, SubmissionStatus.SUBMITTED, "uid-1")
    with pytest.raises(InvalidStatusTransition):
        await repository.update_draft(document.submission_id, comprehensive_payload, "uid-1")


async def test_writes_invalidate_cached_reads(repository, comprehensive_payload) -> None:
    await repository.create(_document(comprehensive_payload))
    assert len(await repository.list_by_owner("uid-1")) == 1
    assert len(await repository.list_recent(10)) == 1

    await repository.create(_document(comprehensive_payload))

    assert len(await repository.list_by_owner("uid-1")) == 2
    assert len(await repository.list_recent(10)) == 2


async def test_read_overlapping_a_write_is_not_cached(repository, comprehensive_payload) -> None:
    query = repository._query

    def slow_query(build):
        result = query(build)
        time.sleep(0.3)
        return result

    repository._query = slow_query
    in_flight = asyncio.ensure_future(repository.list_recent(10))
    await asyncio.sleep(0.05)
    repository._query = query

    await repository.create(_document(comprehensive_payload))

    # started before the insert, so it saw nothing; that result must not be kept
    assert await in_flight == []
    assert len(await repository.list_recent(10)) == 1


async def test_writes_leave_unrelated_cache_entries(repository, comprehensive_payload) -> None:
    await repository.create(_document(comprehensive_payload, owner="uid-2"))
    await repository.list_by_owner("uid-2")
    cache = repository.cache

    await repository.create(_document(comprehensive_payload, owner="uid-1"))

    assert cache.lookup(("owner", "uid-2", None))[0] is True


async def test_writes_publish_change_events(repository, notifier, comprehensive_payload) -> None:
    events = []
    notifier.subscribe(events.append)
    document = _document(comprehensive_payload)

    await repository.create(document)
    await repository.update_status(document.submission_id, SubmissionStatus.SUBMITTED, "uid-1")

    assert [event.kind for event in events] == ["created", "status_changed"]
    assert events[0].submission_id == document.submission_id


async def test_profiles_lookup(repository, session) -> None:
    from clinicalforge.models import User

    session.add(User(uid="uid-9", username="nasreen", password_hash="x", display_name="Dr. Nasreen Haque"))
    session.commit()

    profiles = await repository.get_profiles(["uid-9", "uid-unknown"])
    assert list(profiles) == ["uid-9"]
    assert profiles["uid-9"].display_name == "Dr. Nasreen Haque"


async def test_slow_storage_raises_timeout() -> None:
    repository = SubmissionRepository(None, timeout=0.05)

    def slow():
        import time

        time.sleep(0.5)

    with pytest.raises(StorageTimeout) as excinfo:
        await repository._run("slow", slow)
    assert isinstance(excinfo.value, StorageUnavailable)


async def test_write_past_deadline_is_rolled_back(repository, comprehensive_payload) -> None:
    slow = SubmissionRepository(repository.session_factory, timeout=0.1)
    insert = slow._insert

    def slow_insert(document, deadline=None):
        time.sleep(0.3)
        return insert(document, deadline=deadline)

    slow._insert = slow_insert
    document = _document(comprehensive_payload)

    with pytest.raises(StorageTimeout):
        await slow.create(document)
    # let the executor thread reach its commit
    await asyncio.sleep(0.5)

    assert await repository.get_by_id(document.submission_id) is None
    assert await repository.list_recent(10) == []


def test_commit_deadline_has_one_winner() -> None:
    class FakeSession:
        committed = False

        def commit(self):
            self.committed = True

    expired = CommitDeadline()
    assert expired.expire() is True
    session = FakeSession()
    with pytest.raises(StorageTimeout):
        expired.commit(session)
    assert session.committed is False

    committed = CommitDeadline()
    committed.commit(session)
    assert session.committed is True
    # too late to abandon; the caller waits for the outcome instead
    assert committed.expire() is False


async def test_driver_errors_become_storage_unavailable() -> None:
    from sqlalchemy.exc import OperationalError

    repository = SubmissionRepository(None)

    def broken():
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    with pytest.raises(StorageUnavailable):
        await repository._run("broken", broken)
