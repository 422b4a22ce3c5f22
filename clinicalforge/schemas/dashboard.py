"""Dashboard, metrics and profile analytics contracts."""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import Field

from clinicalforge.schemas.documents import DocumentModel


class TopDisease(DocumentModel):
    name: str
    count: int


class MonthlyContribution(DocumentModel):
    month: str
    count: int


class UserActivity(DocumentModel):
    user_id: str
    display_name: str
    submissions: int
    last_active: datetime


class SystemHealth(DocumentModel):
    is_connected: bool
    cache_size: int = 0
    last_update: datetime


class DashboardStats(DocumentModel):
    total_forms: int = 0
    total_users: int = 0
    total_data_points: int = 0
    completion_rate: int = 0
    recent_submissions: int = 0
    active_collaborations: int = 0
    top_diseases: List[TopDisease] = Field(default_factory=list)
    monthly_contributions: List[MonthlyContribution] = Field(default_factory=list)
    user_activity: List[UserActivity] = Field(default_factory=list)
    system_health: SystemHealth


class TopContributor(DocumentModel):
    user_id: str
    name: str
    submissions: int


class RecentActivity(DocumentModel):
    id: str
    type: Literal["form_submitted", "user_registered", "collaboration_created", "data_exported"]
    title: str
    description: str
    timestamp: datetime
    user_id: Optional[str] = None
    user_name: Optional[str] = None


class SystemMetrics(DocumentModel):
    total_submissions: int = 0
    unique_users: int = 0
    average_completion_rate: int = 0
    top_contributors: List[TopContributor] = Field(default_factory=list)
    recent_activity: List[RecentActivity] = Field(default_factory=list)
    system_status: Literal["healthy", "warning", "error"] = "error"


class DashboardExport(DocumentModel):
    export_date: datetime
    stats: DashboardStats
    system_metrics: SystemMetrics
    metadata: Dict[str, Any] = Field(default_factory=dict)


class UserProfile(DocumentModel):
    uid: str
    display_name: str = ""
    institution: Optional[str] = None
    specialty: Optional[str] = None
    role: str = "contributor"


class ProfileActivity(DocumentModel):
    id: str
    form_type: str
    disease_name: str
    status: str
    submitted_at: datetime
    description: str


class ProfileTopDisease(DocumentModel):
    disease_name: str
    count: int


class UserStatistics(DocumentModel):
    forms_completed: int = 0
    forms_incomplete: int = 0
    total_contributions: int = 0
    completion_rate: int = 0
    recent_activity: List[ProfileActivity] = Field(default_factory=list)
    top_diseases: List[ProfileTopDisease] = Field(default_factory=list)
    monthly_contributions: List[MonthlyContribution] = Field(default_factory=list)


class ProfileAnalytics(DocumentModel):
    user_profile: UserProfile
    statistics: UserStatistics
    is_real_data: bool
