"""Submission API: drafts, submit, review decisions and lookups."""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from clinicalforge.api.v1.auth import get_current_user, require_admin
from clinicalforge.dependencies import get_submission_service
from clinicalforge.models import SubmissionStatus, User, UserRole
from clinicalforge.schemas.documents import (
    DraftUpdate,
    StatusUpdate,
    SubmissionCreate,
    SubmissionDocument,
    SubmissionListResponse,
)
from clinicalforge.services.submissions import SubmissionService

router = APIRouter()


def _listing(documents) -> SubmissionListResponse:
    return SubmissionListResponse(submissions=documents, total=len(documents))


@router.post("/", response_model=SubmissionDocument, status_code=status.HTTP_201_CREATED)
async def create_submission(
    data: SubmissionCreate,
    current_user: User = Depends(get_current_user),
    service: SubmissionService = Depends(get_submission_service),
):
    """Create a draft from raw form state."""
    return await service.create_draft(
        current_user.uid,
        data.form_type,
        data.payload,
        priority=data.priority,
        is_synthetic=data.is_synthetic,
        actor_name=current_user.display_name,
    )


@router.get("/my", response_model=SubmissionListResponse)
async def list_my_submissions(
    limit: Optional[int] = Query(None, ge=1, le=500),
    current_user: User = Depends(get_current_user),
    service: SubmissionService = Depends(get_submission_service),
):
    return _listing(await service.list_mine(current_user.uid, limit))


@router.get("/search", response_model=SubmissionListResponse)
async def search_submissions(
    keyword: str = Query(..., min_length=1),
    limit: Optional[int] = Query(None, ge=1, le=500),
    current_user: User = Depends(get_current_user),
    service: SubmissionService = Depends(get_submission_service),
):
    """Exact keyword membership; no stemming, no ranking. Unreadable drafts are left out."""
    return _listing(
        await service.search(
            keyword, limit, current_user.uid, is_admin=current_user.role == UserRole.ADMIN
        )
    )


@router.get("/approved", response_model=SubmissionListResponse)
async def list_approved_submissions(
    limit: Optional[int] = Query(None, ge=1, le=500),
    current_user: User = Depends(get_current_user),
    service: SubmissionService = Depends(get_submission_service),
):
    """Reviewed knowledge every contributor may browse."""
    return _listing(await service.list_approved(limit))


@router.get("/disease-type/{disease_type}", response_model=SubmissionListResponse)
async def list_by_disease_type(
    disease_type: str,
    limit: Optional[int] = Query(None, ge=1, le=500),
    current_user: User = Depends(get_current_user),
    service: SubmissionService = Depends(get_submission_service),
):
    return _listing(
        await service.list_by_disease_type(
            disease_type, limit, current_user.uid, is_admin=current_user.role == UserRole.ADMIN
        )
    )


@router.get("/status/{submission_status}", response_model=SubmissionListResponse)
async def list_by_status(
    submission_status: SubmissionStatus,
    limit: Optional[int] = Query(None, ge=1, le=500),
    admin: User = Depends(require_admin),
    service: SubmissionService = Depends(get_submission_service),
):
    return _listing(await service.list_by_status(submission_status, limit))


@router.get("/{submission_id}", response_model=SubmissionDocument)
async def get_submission(
    submission_id: str,
    current_user: User = Depends(get_current_user),
    service: SubmissionService = Depends(get_submission_service),
):
    return await service.get(
        submission_id, current_user.uid, is_admin=current_user.role == UserRole.ADMIN
    )


@router.put("/{submission_id}", response_model=SubmissionDocument)
async def update_draft(
    submission_id: str,
    data: DraftUpdate,
    current_user: User = Depends(get_current_user),
    service: SubmissionService = Depends(get_submission_service),
):
    return await service.update_draft(
        current_user.uid, submission_id, data.payload, data.expected_revision
    )


@router.post("/{submission_id}/submit", response_model=SubmissionDocument)
async def submit_submission(
    submission_id: str,
    expected_revision: Optional[int] = Query(None, alias="expectedRevision"),
    current_user: User = Depends(get_current_user),
    service: SubmissionService = Depends(get_submission_service),
):
    return await service.submit(current_user.uid, submission_id, expected_revision)


@router.post("/{submission_id}/status", response_model=SubmissionDocument)
async def change_status(
    submission_id: str,
    data: StatusUpdate,
    admin: User = Depends(require_admin),
    service: SubmissionService = Depends(get_submission_service),
):
    """Reviewer decision; ``expectedRevision`` turns the write into a compare-and-swap."""
    return await service.change_status(
        admin.uid, submission_id, data.status, data.expected_revision
    )
