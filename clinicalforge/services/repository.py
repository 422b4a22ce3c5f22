"""Storage gateway for submission documents.

Every public method is a coroutine. The blocking SQLAlchemy work runs in the
default thread executor with a deadline so an unresponsive database surfaces
as ``StorageTimeout`` instead of stalling the caller. A write that misses its
deadline is rolled back rather than committed late. Driver errors are
translated into ``StorageUnavailable`` / ``PermissionDenied``.
"""

from __future__ import annotations

import asyncio
import copy
import functools
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set, TypeVar

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from clinicalforge.db import CommitDeadline, session_scope
from clinicalforge.errors import (
    ClinicalForgeError,
    ConcurrentModification,
    InvalidStatusTransition,
    PermissionDenied,
    StorageTimeout,
    SubmissionNotFound,
    translate_storage_error,
)
from clinicalforge.models import (
    STATUS_TRANSITIONS,
    Submission,
    SubmissionCategory,
    SubmissionKeyword,
    SubmissionStatus,
    User,
)
from clinicalforge.schemas.dashboard import UserProfile
from clinicalforge.schemas.documents import (
    AccessControl,
    SearchIndex,
    SubmissionDocument,
    SubmissionMetadata,
    SupplementaryScore,
    ValidationScores,
)
from clinicalforge.services.builder import rebuild_payload, restamp
from clinicalforge.services.cache import QueryCache
from clinicalforge.services.notifier import ChangeEvent, ChangeNotifier
from clinicalforge.services.scoring import SupplementaryScorer
from clinicalforge.utils.dates import ensure_utc
from clinicalforge.utils.text_processing import dedupe

logger = logging.getLogger(__name__)

T = TypeVar("T")


# === Row <-> document mapping ===

def _metadata_from_row(row: Submission) -> SubmissionMetadata:
    if row.metadata_json:
        return SubmissionMetadata.model_validate(row.metadata_json)
    # rows written before metadata existed
    submitted_at = ensure_utc(row.submitted_at)
    owner = row.collaborator_id
    return SubmissionMetadata(
        created_at=submitted_at,
        updated_at=submitted_at,
        created_by=owner,
        last_modified_by=owner,
        access_control=AccessControl(read_access=[owner], write_access=[owner], admin_access=[owner]),
        status=row.status,
    )


def to_document(row: Submission) -> SubmissionDocument:
    validation = dict(row.validation_json or {})
    supplementary = validation.pop("supplementaryScores", [])
    return SubmissionDocument(
        submission_id=row.submission_id,
        collaborator_id=row.collaborator_id,
        form_type=row.form_type,
        status=row.status,
        version=row.version,
        revision=row.revision,
        submitted_at=ensure_utc(row.submitted_at),
        is_synthetic=row.is_synthetic,
        payload=copy.deepcopy(row.payload_json or {}),
        validation=ValidationScores.model_validate(validation),
        supplementary_scores=[SupplementaryScore.model_validate(item) for item in supplementary],
        advanced_analytics=copy.deepcopy(row.advanced_analytics_json or {}),
        metadata=_metadata_from_row(row),
        search_index=SearchIndex.model_validate(row.search_index_json or {}),
    )


def _columns(document: SubmissionDocument) -> Dict[str, Any]:
    validation = document.validation.model_dump(mode="json", by_alias=True)
    validation["supplementaryScores"] = [
        score.model_dump(mode="json", by_alias=True) for score in document.supplementary_scores
    ]
    return {
        "status": document.status,
        "disease_name": document.search_index.disease_name or None,
        "payload_json": document.payload,
        "validation_json": validation,
        "search_index_json": document.search_index.model_dump(mode="json", by_alias=True),
        "advanced_analytics_json": document.advanced_analytics,
        "metadata_json": document.metadata.model_dump(mode="json", by_alias=True),
    }


def _categories(document: SubmissionDocument) -> List[str]:
    return dedupe(category.strip().lower() for category in document.search_index.categories)


def _ordered(statement):
    return statement.order_by(Submission.submitted_at.desc(), Submission.id.desc())


class SubmissionRepository:
    """Typed CRUD boundary over the submission tables.

    ``cache`` and ``notifier`` are optional collaborators owned by the app; a
    repository without them reads straight through and publishes nothing.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        cache: Optional[QueryCache] = None,
        notifier: Optional[ChangeNotifier] = None,
        timeout: float = 10.0,
        scorer: Optional[SupplementaryScorer] = None,
    ) -> None:
        self.session_factory = session_factory
        self.cache = cache
        self.notifier = notifier
        self.timeout = timeout
        self.scorer = scorer

    # --- plumbing ---

    async def _run(
        self,
        operation: str,
        func: Callable[..., T],
        *args: Any,
        deadline: Optional[CommitDeadline] = None,
    ) -> T:
        loop = asyncio.get_running_loop()
        call = loop.run_in_executor(None, functools.partial(func, *args))
        try:
            done, _ = await asyncio.wait({call}, timeout=self.timeout)
            if not done and (deadline is None or deadline.expire()):
                call.cancel()
                logger.warning("Storage call %s exceeded %.1fs", operation, self.timeout)
                raise StorageTimeout(f"{operation} did not finish within {self.timeout:.1f}s")
            # either finished, or its commit was already under way at the deadline
            return await call
        except asyncio.CancelledError:
            if deadline is not None:
                deadline.expire()
            raise
        except ClinicalForgeError:
            raise
        except SQLAlchemyError as exc:
            logger.warning("Storage call %s failed: %s", operation, exc)
            raise translate_storage_error(exc) from exc

    async def _cached(self, key: tuple, operation: str, func: Callable[..., T], *args: Any) -> T:
        if self.cache is None:
            return await self._run(operation, func, *args)
        hit, value = self.cache.lookup(key)
        if hit:
            return value
        generation = self.cache.generation(key[0])
        value = await self._run(operation, func, *args)
        self.cache.set_if_current(key, value, generation)
        return value

    async def _write(self, operation: str, func: Callable[..., T], *args: Any) -> T:
        """Run a write whose commit is abandoned if the timeout fires first."""

        deadline = CommitDeadline()
        return await self._run(
            operation, functools.partial(func, *args, deadline=deadline), deadline=deadline
        )

    def _invalidate(self, *documents: Optional[SubmissionDocument]) -> None:
        if self.cache is None:
            return
        self.cache.invalidate_matching("window")
        for document in documents:
            if document is None:
                continue
            self.cache.invalidate(("submission", document.submission_id))
            self.cache.invalidate_matching("owner", document.collaborator_id)
            self.cache.invalidate_matching("status", document.status.value)
            for keyword in document.search_index.keywords:
                self.cache.invalidate_matching("keyword", keyword)
            for category in document.search_index.categories:
                self.cache.invalidate_matching("disease-type", category)

    def _publish(self, kind: str, document: SubmissionDocument) -> None:
        if self.notifier is not None:
            self.notifier.publish(
                ChangeEvent(
                    kind=kind,
                    submission_id=document.submission_id,
                    collaborator_id=document.collaborator_id,
                )
            )

    def _query(self, build: Callable[[], Any]) -> List[SubmissionDocument]:
        with session_scope(self.session_factory) as session:
            rows = session.execute(build()).scalars().unique().all()
            return [to_document(row) for row in rows]

    # --- writes ---

    def _insert(
        self, document: SubmissionDocument, deadline: Optional[CommitDeadline] = None
    ) -> str:
        with session_scope(self.session_factory, deadline) as session:
            row = Submission(
                submission_id=document.submission_id,
                collaborator_id=document.collaborator_id,
                form_type=document.form_type,
                version=document.version,
                revision=document.revision,
                is_synthetic=document.is_synthetic,
                submitted_at=document.submitted_at,
                **_columns(document),
            )
            row.keywords = [
                SubmissionKeyword(keyword=keyword) for keyword in document.search_index.keywords
            ]
            row.categories = [
                SubmissionCategory(category=category) for category in _categories(document)
            ]
            session.add(row)
        return document.submission_id

    async def create(self, document: SubmissionDocument) -> str:
        """Insert one document; returns its ``submissionId``."""

        submission_id = await self._write("create", self._insert, document)
        logger.info(
            "Stored submission %s (%s) for %s",
            submission_id,
            document.form_type.value,
            document.collaborator_id,
        )
        self._invalidate(document)
        self._publish("created", document)
        return submission_id

    def _load_for_update(self, session: Session, submission_id: str) -> Submission:
        row = session.execute(
            select(Submission).where(Submission.submission_id == submission_id)
        ).scalar_one_or_none()
        if row is None:
            raise SubmissionNotFound(f"Submission {submission_id} not found")
        return row

    def _write_back(
        self,
        session: Session,
        row: Submission,
        document: SubmissionDocument,
        expected_revision: Optional[int],
        replace_index: bool,
    ) -> SubmissionDocument:
        statement = update(Submission).where(Submission.id == row.id)
        if expected_revision is not None:
            statement = statement.where(Submission.revision == expected_revision)
        result = session.execute(
            statement.values(revision=Submission.revision + 1, **_columns(document)).execution_options(
                synchronize_session=False
            )
        )
        if result.rowcount == 0:
            raise ConcurrentModification(
                f"Submission {document.submission_id} changed since revision {expected_revision}"
            )
        if replace_index:
            session.execute(delete(SubmissionKeyword).where(SubmissionKeyword.submission_pk == row.id))
            session.add_all(
                SubmissionKeyword(submission_pk=row.id, keyword=keyword)
                for keyword in document.search_index.keywords
            )
            session.execute(delete(SubmissionCategory).where(SubmissionCategory.submission_pk == row.id))
            session.add_all(
                SubmissionCategory(submission_pk=row.id, category=category)
                for category in _categories(document)
            )
        revision = session.execute(
            select(Submission.revision).where(Submission.id == row.id)
        ).scalar_one()
        return document.model_copy(update={"revision": revision})

    def _change_status(
        self,
        submission_id: str,
        status: SubmissionStatus,
        actor_id: str,
        expected_revision: Optional[int],
        deadline: Optional[CommitDeadline] = None,
    ) -> tuple:
        with session_scope(self.session_factory, deadline) as session:
            row = self._load_for_update(session, submission_id)
            previous = to_document(row)
            if expected_revision is not None and previous.revision != expected_revision:
                raise ConcurrentModification(
                    f"Submission {submission_id} is at revision {previous.revision}, "
                    f"not {expected_revision}"
                )
            if status not in STATUS_TRANSITIONS[previous.status]:
                raise InvalidStatusTransition(
                    f"Cannot move submission from {previous.status.value} to {status.value}"
                )
            updated = restamp(
                previous,
                copy.deepcopy(previous.payload),
                actor_id,
                [f"Status changed to {status.value}"],
                status=status,
                scorer=self.scorer,
            )
            stored = self._write_back(session, row, updated, expected_revision, replace_index=False)
        return previous, stored

    async def update_status(
        self,
        submission_id: str,
        status: SubmissionStatus,
        actor_id: str,
        expected_revision: Optional[int] = None,
    ) -> SubmissionDocument:
        """Move a submission forward in its lifecycle.

        Derived blocks are recomputed and the modifier stamped. With
        ``expected_revision`` the write is a compare-and-swap; without it the
        last writer wins.
        """

        previous, stored = await self._write(
            "update_status",
            self._change_status,
            submission_id,
            SubmissionStatus(status),
            actor_id,
            expected_revision,
        )
        logger.info(
            "Submission %s moved %s -> %s by %s",
            submission_id,
            previous.status.value,
            stored.status.value,
            actor_id,
        )
        self._invalidate(previous, stored)
        self._publish("status_changed", stored)
        return stored

    def _replace_draft(
        self,
        submission_id: str,
        payload: Dict[str, Any],
        actor_id: str,
        expected_revision: Optional[int],
        deadline: Optional[CommitDeadline] = None,
    ) -> tuple:
        with session_scope(self.session_factory, deadline) as session:
            row = self._load_for_update(session, submission_id)
            previous = to_document(row)
            if actor_id not in previous.metadata.access_control.write_access:
                raise PermissionDenied(f"{actor_id} cannot edit submission {submission_id}")
            if previous.status != SubmissionStatus.DRAFT:
                raise InvalidStatusTransition(
                    f"Submission {submission_id} is {previous.status.value}; only drafts can be edited"
                )
            if expected_revision is not None and previous.revision != expected_revision:
                raise ConcurrentModification(
                    f"Submission {submission_id} is at revision {previous.revision}, "
                    f"not {expected_revision}"
                )
            updated = rebuild_payload(previous, actor_id, payload, scorer=self.scorer)
            stored = self._write_back(session, row, updated, expected_revision, replace_index=True)
        return previous, stored

    async def update_draft(
        self,
        submission_id: str,
        payload: Dict[str, Any],
        actor_id: str,
        expected_revision: Optional[int] = None,
    ) -> SubmissionDocument:
        """Replace a draft's payload and recompute every derived block."""

        previous, stored = await self._write(
            "update_draft", self._replace_draft, submission_id, payload, actor_id, expected_revision
        )
        logger.info("Draft %s updated by %s (revision %d)", submission_id, actor_id, stored.revision)
        self._invalidate(previous, stored)
        self._publish("updated", stored)
        return stored

    # --- reads ---

    def _get(self, submission_id: str) -> Optional[SubmissionDocument]:
        with session_scope(self.session_factory) as session:
            row = session.execute(
                select(Submission).where(Submission.submission_id == submission_id)
            ).scalar_one_or_none()
            return to_document(row) if row is not None else None

    async def get_by_id(self, submission_id: str) -> Optional[SubmissionDocument]:
        """Exact lookup by ``submissionId``; ``None`` when absent."""

        return await self._cached(("submission", submission_id), "get_by_id", self._get, submission_id)

    async def list_by_owner(
        self, owner_id: str, limit: Optional[int] = None
    ) -> List[SubmissionDocument]:
        def build():
            statement = _ordered(select(Submission).where(Submission.collaborator_id == owner_id))
            return statement.limit(limit) if limit else statement

        return await self._cached(("owner", owner_id, limit), "list_by_owner", self._query, build)

    async def list_by_status(
        self, status: SubmissionStatus, limit: Optional[int] = None
    ) -> List[SubmissionDocument]:
        status = SubmissionStatus(status)

        def build():
            statement = _ordered(select(Submission).where(Submission.status == status))
            return statement.limit(limit) if limit else statement

        return await self._cached(
            ("status", status.value, limit), "list_by_status", self._query, build
        )

    async def search_by_keyword(
        self, keyword: str, limit: Optional[int] = None
    ) -> List[SubmissionDocument]:
        """Exact membership in the keyword set. The caller lower-cases ``keyword``."""

        def build():
            statement = _ordered(
                select(Submission)
                .join(SubmissionKeyword, SubmissionKeyword.submission_pk == Submission.id)
                .where(SubmissionKeyword.keyword == keyword)
                .distinct()
            )
            return statement.limit(limit) if limit else statement

        return await self._cached(("keyword", keyword, limit), "search_by_keyword", self._query, build)

    async def list_by_disease_type(
        self, disease_type: str, limit: Optional[int] = None
    ) -> List[SubmissionDocument]:
        disease_type = disease_type.strip().lower()

        def build():
            statement = _ordered(
                select(Submission)
                .join(SubmissionCategory, SubmissionCategory.submission_pk == Submission.id)
                .where(SubmissionCategory.category == disease_type)
                .distinct()
            )
            return statement.limit(limit) if limit else statement

        return await self._cached(
            ("disease-type", disease_type, limit), "list_by_disease_type", self._query, build
        )

    async def list_recent(self, window: int) -> List[SubmissionDocument]:
        """Newest-first, at most ``window`` documents."""

        return await self._cached(
            ("window", window),
            "list_recent",
            self._query,
            lambda: _ordered(select(Submission)).limit(window),
        )

    # --- user profiles ---

    def _profiles(self, uids: Sequence[str]) -> Dict[str, UserProfile]:
        if not uids:
            return {}
        with session_scope(self.session_factory) as session:
            users = session.execute(select(User).where(User.uid.in_(list(uids)))).scalars().all()
            return {
                user.uid: UserProfile(
                    uid=user.uid,
                    display_name=user.display_name,
                    institution=user.institution,
                    specialty=user.specialty,
                    role=user.role.value,
                )
                for user in users
            }

    async def get_profiles(self, uids: Iterable[str]) -> Dict[str, UserProfile]:
        unique: Set[str] = set(uids)
        return await self._run("get_profiles", self._profiles, sorted(unique))

    async def get_profile(self, uid: str) -> Optional[UserProfile]:
        profiles = await self.get_profiles([uid])
        return profiles.get(uid)
