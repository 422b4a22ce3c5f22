"""Synthetic (test/demo) submission classification.

New submissions get an explicit ``isSynthetic`` flag at build time. The substring
heuristic below only decides that flag when the caller gives none, and for legacy
rows stored before the flag existed.
"""

from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from clinicalforge.models import Submission, User
from clinicalforge.services.scoring import disease_name_of


SYNTHETIC_MARKERS = ("test", "dummy", "sample", "demo", "fake")
PLACEHOLDER_DISEASE_NAMES = frozenset(
    {
        "asdf",
        "example disease",
        "lorem ipsum",
        "n/a",
        "na",
        "none",
        "placeholder",
        "unknown disease",
        "xyz",
    }
)


def _attribution(payload: Mapping[str, Any]) -> Iterable[str]:
    consent = payload.get("physicianConsent")
    if isinstance(consent, Mapping):
        for key in ("physicianName", "institution"):
            value = consent.get(key)
            if isinstance(value, str):
                yield value


def looks_synthetic(payload: Mapping[str, Any], user_name: Optional[str] = None) -> bool:
    """Denylist match on disease name and attributed user or institution."""

    payload = payload or {}
    disease = disease_name_of(payload).lower()
    if disease in PLACEHOLDER_DISEASE_NAMES:
        return True
    candidates = [disease, *(value.lower() for value in _attribution(payload))]
    if user_name:
        candidates.append(user_name.lower())
    return any(marker in candidate for candidate in candidates for marker in SYNTHETIC_MARKERS)


def is_synthetic(
    flag: Optional[bool], payload: Mapping[str, Any], user_name: Optional[str] = None
) -> bool:
    """Stored flag wins; ``None`` falls back to the heuristic."""

    if flag is not None:
        return flag
    return looks_synthetic(payload, user_name)


def backfill_flags(session: Session) -> Tuple[int, int]:
    """Classify rows whose flag is still ``NULL``; returns ``(synthetic, real)``.

    The owner's display name is checked alongside the payload.
    """

    synthetic = real = 0
    rows = session.execute(select(Submission).where(Submission.is_synthetic.is_(None))).scalars().all()
    owners = {row.collaborator_id for row in rows}
    names: Dict[str, str] = {}
    if owners:
        query = select(User.uid, User.display_name).where(User.uid.in_(owners))
        names = dict(session.execute(query).tuples().all())
    for row in rows:
        row.is_synthetic = looks_synthetic(row.payload_json or {}, names.get(row.collaborator_id))
        if row.is_synthetic:
            synthetic += 1
        else:
            real += 1
    return synthetic, real


def purge_synthetic(session: Session) -> int:
    """Delete rows flagged synthetic, keywords included."""

    rows = session.execute(select(Submission).where(Submission.is_synthetic.is_(True))).scalars().all()
    for row in rows:
        session.delete(row)
    return len(rows)
