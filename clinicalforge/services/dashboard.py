"""Dashboard aggregation.

``aggregate_stats`` is a pure function over a list of documents. The
``DashboardService`` wraps it with the bulk read and the fail-soft contract:
dashboard reads never raise; on any failure they resolve to empty stats with
``systemHealth.isConnected = False``.
"""

from __future__ import annotations

import logging
import random
from collections import Counter
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from clinicalforge.config import Settings, get_settings
from clinicalforge.schemas.dashboard import (
    DashboardExport,
    DashboardStats,
    MonthlyContribution,
    RecentActivity,
    SystemHealth,
    SystemMetrics,
    TopContributor,
    TopDisease,
    UserActivity,
    UserProfile,
)
from clinicalforge.schemas.documents import SubmissionDocument
from clinicalforge.services.cache import QueryCache
from clinicalforge.services.repository import SubmissionRepository
from clinicalforge.services.scoring import disease_name_of, percent
from clinicalforge.services.synthetic import is_synthetic
from clinicalforge.utils.dates import ensure_utc, month_key, utcnow

logger = logging.getLogger(__name__)

EXPORT_VERSION = "1.0.0"

_PLACEHOLDER_FIRST_NAMES = ("Alex", "Jordan", "Morgan", "Riley", "Sam", "Taylor", "Casey", "Jamie")
_PLACEHOLDER_LAST_NAMES = ("Rahman", "Chen", "Okafor", "Silva", "Hossain", "Patel", "Novak", "Khan")


# === Helpers ===

def disease_of(document: SubmissionDocument) -> str:
    return (document.search_index.disease_name or disease_name_of(document.payload)).strip()


def _consent_field(document: SubmissionDocument, key: str) -> str:
    consent = document.payload.get("physicianConsent")
    if isinstance(consent, Mapping) and isinstance(consent.get(key), str):
        return consent[key].strip()
    return ""


def _looks_like_name(value: Optional[str], collaborator_id: str) -> bool:
    if not value or value == collaborator_id:
        return False
    value = value.strip()
    return " " in value and any(char.isalpha() for char in value) and "@" not in value


def _name_from_identifier(collaborator_id: str) -> Optional[str]:
    """``jane.doe@clinic.org`` -> ``Jane Doe``; opaque ids give nothing."""

    local = collaborator_id.split("@", 1)[0] if "@" in collaborator_id else ""
    if not local:
        return None
    parts = [part for part in local.replace("_", ".").replace("-", ".").split(".") if part]
    if not parts or not all(part.isalpha() for part in parts):
        return None
    return " ".join(part.capitalize() for part in parts)


def resolve_display_name(
    document: SubmissionDocument, profile: Optional[UserProfile] = None
) -> Optional[str]:
    """Physician name, then profile, then creator/modifier, then id heuristics."""

    physician = _consent_field(document, "physicianName")
    if physician:
        return physician
    if profile is not None and profile.display_name.strip():
        return profile.display_name.strip()
    for candidate in (document.metadata.created_by, document.metadata.last_modified_by):
        if _looks_like_name(candidate, document.collaborator_id):
            return candidate.strip()
    return _name_from_identifier(document.collaborator_id)


def placeholder_name(rng: random.Random) -> str:
    return f"Dr. {rng.choice(_PLACEHOLDER_FIRST_NAMES)} {rng.choice(_PLACEHOLDER_LAST_NAMES)}"


def data_points(document: SubmissionDocument) -> int:
    """Top-level keys of the payload plus the analytics block."""

    return len(document.payload) + len(document.advanced_analytics)


def filter_real(
    documents: Sequence[SubmissionDocument],
    profiles: Optional[Mapping[str, UserProfile]] = None,
) -> List[SubmissionDocument]:
    """Drop synthetic documents; legacy rows without a flag go through the heuristic.

    The heuristic also checks the owner's profile display name when
    ``profiles`` has one.
    """

    profiles = profiles or {}
    kept = []
    for document in documents:
        profile = profiles.get(document.collaborator_id)
        user_name = profile.display_name if profile is not None else None
        if not is_synthetic(document.is_synthetic, document.payload, user_name):
            kept.append(document)
    return kept


def top_diseases(documents: Sequence[SubmissionDocument], limit: int) -> List[TopDisease]:
    counts: Counter = Counter()
    for document in documents:
        name = disease_of(document)
        if name:
            counts[name] += 1
    # sorted() is stable, so ties keep store order
    ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    return [TopDisease(name=name, count=count) for name, count in ranked[:limit]]


def monthly_contributions(
    documents: Sequence[SubmissionDocument], buckets: int
) -> List[MonthlyContribution]:
    counts: Counter = Counter(month_key(ensure_utc(doc.submitted_at)) for doc in documents)
    months = sorted(counts)[-buckets:]
    return [MonthlyContribution(month=month, count=counts[month]) for month in months]


def user_rollup(
    documents: Sequence[SubmissionDocument],
    profiles: Mapping[str, UserProfile],
    rng: random.Random,
) -> List[UserActivity]:
    """Every distinct user, most submissions first."""

    totals: Dict[str, int] = {}
    last_active: Dict[str, datetime] = {}
    names: Dict[str, Optional[str]] = {}
    for document in documents:
        uid = document.collaborator_id or "unknown"
        submitted_at = ensure_utc(document.submitted_at)
        totals[uid] = totals.get(uid, 0) + 1
        if uid not in last_active or submitted_at > last_active[uid]:
            last_active[uid] = submitted_at
        if not names.get(uid):
            names[uid] = resolve_display_name(document, profiles.get(uid))

    ordered = sorted(totals, key=lambda uid: (-totals[uid], -last_active[uid].timestamp()))
    return [
        UserActivity(
            user_id=uid,
            display_name=names.get(uid) or placeholder_name(rng),
            submissions=totals[uid],
            last_active=last_active[uid],
        )
        for uid in ordered
    ]


def _institutions(
    documents: Sequence[SubmissionDocument], profiles: Mapping[str, UserProfile]
) -> int:
    found = set()
    for document in documents:
        institution = _consent_field(document, "institution")
        if not institution:
            profile = profiles.get(document.collaborator_id)
            institution = (profile.institution or "").strip() if profile else ""
        if institution:
            found.add(institution)
    return len(found)


def empty_stats(now: datetime, cache_size: int = 0) -> DashboardStats:
    return DashboardStats(
        system_health=SystemHealth(is_connected=False, cache_size=cache_size, last_update=now)
    )


def aggregate_stats(
    documents: Sequence[SubmissionDocument],
    profiles: Mapping[str, UserProfile],
    *,
    now: datetime,
    recent_days: int = 7,
    top_n: int = 5,
    monthly_buckets: int = 6,
    cache_size: int = 0,
    rng: Optional[random.Random] = None,
) -> DashboardStats:
    """Summarise already-filtered documents into one ``DashboardStats``."""

    rng = rng or random.Random()
    cutoff = now - timedelta(days=recent_days)
    total = len(documents)
    recent = sum(1 for document in documents if ensure_utc(document.submitted_at) >= cutoff)
    users = user_rollup(documents, profiles, rng)

    return DashboardStats(
        total_forms=total,
        total_users=len(users),
        total_data_points=sum(data_points(document) for document in documents),
        completion_rate=percent(recent, total),
        recent_submissions=recent,
        active_collaborations=_institutions(documents, profiles),
        top_diseases=top_diseases(documents, top_n),
        monthly_contributions=monthly_contributions(documents, monthly_buckets),
        user_activity=users[:top_n],
        system_health=SystemHealth(is_connected=True, cache_size=cache_size, last_update=now),
    )


def system_status(total: int, completion_rate: int) -> str:
    if total == 0:
        return "warning"
    if completion_rate < 25:
        return "error"
    if completion_rate < 50:
        return "warning"
    return "healthy"


def _recent_activity(documents: Sequence[SubmissionDocument], names: Mapping[str, str]) -> List[RecentActivity]:
    activity = []
    for document in documents[:5]:
        disease = disease_of(document) or "Clinical data"
        activity.append(
            RecentActivity(
                id=document.submission_id,
                type="form_submitted",
                title=f"{document.form_type.value} {document.status.value}",
                description=disease,
                timestamp=ensure_utc(document.submitted_at),
                user_id=document.collaborator_id,
                user_name=names.get(document.collaborator_id),
            )
        )
    return activity


# === Service ===

class DashboardService:
    """Reads a bounded window of submissions and aggregates it.

    ``rng`` feeds the placeholder display names; inject a seeded one for
    reproducible output.
    """

    def __init__(
        self,
        repository: SubmissionRepository,
        settings: Optional[Settings] = None,
        cache: Optional[QueryCache] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.repository = repository
        self.settings = settings or get_settings()
        self.cache = cache if cache is not None else repository.cache
        self.rng = rng or random.Random()
        self.clock = clock

    def _cache_size(self) -> int:
        return len(self.cache) if self.cache is not None else 0

    async def _load(self) -> Tuple[List[SubmissionDocument], Dict[str, UserProfile]]:
        documents = await self.repository.list_recent(self.settings.dashboard_window)
        profiles = await self.repository.get_profiles(doc.collaborator_id for doc in documents)
        documents = filter_real(documents, profiles)
        return documents, profiles

    async def get_dashboard_stats(self) -> DashboardStats:
        now = self.clock()
        try:
            documents, profiles = await self._load()
            return aggregate_stats(
                documents,
                profiles,
                now=now,
                recent_days=self.settings.recent_days,
                top_n=self.settings.top_n,
                monthly_buckets=self.settings.monthly_buckets,
                cache_size=self._cache_size(),
                rng=self.rng,
            )
        except Exception:
            logger.warning("Dashboard aggregation failed; serving empty stats", exc_info=True)
            return empty_stats(now, self._cache_size())

    async def get_system_metrics(self) -> SystemMetrics:
        try:
            documents, profiles = await self._load()
            stats = aggregate_stats(
                documents,
                profiles,
                now=self.clock(),
                recent_days=self.settings.recent_days,
                top_n=self.settings.top_n,
                monthly_buckets=self.settings.monthly_buckets,
                cache_size=self._cache_size(),
                rng=self.rng,
            )
        except Exception:
            logger.warning("System metrics failed; serving empty metrics", exc_info=True)
            return SystemMetrics(system_status="error")

        names = {user.user_id: user.display_name for user in stats.user_activity}
        return SystemMetrics(
            total_submissions=stats.total_forms,
            unique_users=stats.total_users,
            average_completion_rate=stats.completion_rate,
            top_contributors=[
                TopContributor(user_id=user.user_id, name=user.display_name, submissions=user.submissions)
                for user in stats.user_activity
            ],
            recent_activity=_recent_activity(documents, names),
            system_status=system_status(stats.total_forms, stats.completion_rate),
        )

    async def export_dashboard_data(self) -> DashboardExport:
        stats = await self.get_dashboard_stats()
        metrics = await self.get_system_metrics()
        logger.info("Dashboard export prepared (%d forms)", stats.total_forms)
        return DashboardExport(
            export_date=self.clock(),
            stats=stats,
            system_metrics=metrics,
            metadata={"version": EXPORT_VERSION, "exportType": "dashboard_data"},
        )
