"""Analysis API endpoints: start, poll, cancel and read review analyses."""

import asyncio
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from typing import Optional

from reviewlens.analytics.transformer import AnalysisTransformer
from reviewlens.exceptions import (
    AppNotFoundError,
    NoValidReviewsError,
    ReviewLensError,
    ScraperError,
)
from reviewlens.models.dashboard_schemas import (
    DateRangeFilter,
    OverviewTabData,
    ReviewFilters,
    ReviewsTabData,
    SentimentFilter,
    SortField,
    SortOrder,
    TopicsTabData,
)
from reviewlens.models.schemas import (
    AnalysisProgress,
    AnalyzeRequest,
    ANALYZER_KINDS,
    CombinedAnalysisResult,
    ProgressResponse,
    RunResponse,
)
from reviewlens.services.analysis_sessions import AnalysisSession, AnalysisSessionRegistry
from reviewlens.utils.validators import validate_app_id

router = APIRouter()


def get_registry(request: Request) -> AnalysisSessionRegistry:
    return request.app.state.sessions


def valid_app_id(app_id: str) -> str:
    """Path dependency rejecting malformed app ids."""
    is_valid, error = validate_app_id(app_id)
    if not is_valid:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=error)
    return app_id


def error_status(error: ReviewLensError) -> int:
    """HTTP status for a failed run."""
    if isinstance(error, NoValidReviewsError):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    if isinstance(error, AppNotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(error, ScraperError):
        return status.HTTP_502_BAD_GATEWAY
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def run_response(session: AnalysisSession) -> RunResponse:
    return RunResponse(
        app_id=session.app_id,
        status=session.status,
        review_count=len(session.reviews),
        analysis_id=session.service.analysis_id,
        error=session.error_message
    )


def completed_session(registry: AnalysisSessionRegistry, app_id: str) -> AnalysisSession:
    session = registry.get(app_id)
    if session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"No analysis for {app_id}")
    if session.result is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Analysis for {app_id} has no result (status: {session.status})"
        )
    return session


def session_transformer(registry: AnalysisSessionRegistry, app_id: str) -> AnalysisTransformer:
    return completed_session(registry, app_id).transformer()


@router.post("/{app_id}/runs", response_model=RunResponse, status_code=status.HTTP_202_ACCEPTED)
async def start_analysis(
    response: Response,
    body: Optional[AnalyzeRequest] = None,
    wait: bool = Query(default=False, description="Block until the run finishes"),
    app_id: str = Depends(valid_app_id),
    registry: AnalysisSessionRegistry = Depends(get_registry)
):
    """
    Start analyzing an app's reviews.

    Reviews in the body are analyzed as given; without them the newest
    Play Store reviews are scraped first. Poll ``/progress`` afterwards,
    or pass ``wait=true`` to get the final status in the response.
    """
    body = body or AnalyzeRequest()

    try:
        session = registry.start(app_id, body.reviews, body.config, body.max_reviews)
    except RuntimeError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    if wait:
        await asyncio.wait({session.task})
        response.status_code = status.HTTP_200_OK
        if session.status == "error" and session.error is not None:
            raise HTTPException(status_code=error_status(session.error), detail=session.error_message)

    return run_response(session)


@router.get("/{app_id}/progress", response_model=ProgressResponse)
async def get_progress(
    app_id: str = Depends(valid_app_id),
    registry: AnalysisSessionRegistry = Depends(get_registry)
):
    """
    Per-analyzer progress of the app's current or latest run.

    After a restart the last persisted snapshot of an interrupted run is
    returned with status ``interrupted``.
    """
    session = registry.get(app_id)

    if session is None:
        record = await registry.cache.find_progress(app_id) if registry.cache else None
        if record is not None:
            progress = {kind: record.progress.get(kind, AnalysisProgress()) for kind in ANALYZER_KINDS}
            return ProgressResponse(
                app_id=app_id,
                status="interrupted",
                overall_progress=sum(p.progress for p in progress.values()) / len(progress),
                progress=progress,
                analysis_id=record.analysis_id
            )

        return ProgressResponse(
            app_id=app_id,
            status="idle",
            overall_progress=0.0,
            progress={kind: AnalysisProgress() for kind in ANALYZER_KINDS}
        )

    return ProgressResponse(
        app_id=app_id,
        status=session.status,
        overall_progress=session.service.overall_progress,
        progress=session.service.get_progress(),
        analysis_id=session.service.analysis_id,
        error=session.error_message
    )


@router.post("/{app_id}/cancel", response_model=RunResponse)
async def cancel_analysis(
    app_id: str = Depends(valid_app_id),
    registry: AnalysisSessionRegistry = Depends(get_registry)
):
    """Cancel the app's running analysis."""
    session = await registry.cancel(app_id)
    if session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"No analysis for {app_id}")
    return run_response(session)


@router.get("/{app_id}/result", response_model=CombinedAnalysisResult)
async def get_result(
    app_id: str = Depends(valid_app_id),
    registry: AnalysisSessionRegistry = Depends(get_registry)
):
    """Combined result of the app's latest completed run."""
    return completed_session(registry, app_id).result


@router.get("/{app_id}/overview", response_model=OverviewTabData)
async def get_overview(
    app_id: str = Depends(valid_app_id),
    registry: AnalysisSessionRegistry = Depends(get_registry)
):
    """App header, rating distribution, sentiment split, monthly trend and top topics."""
    return session_transformer(registry, app_id).get_overview_tab_data()


@router.get("/{app_id}/reviews", response_model=ReviewsTabData)
async def get_reviews(
    search: Optional[str] = Query(default=None, max_length=200),
    rating: Optional[int] = Query(default=None, ge=0, le=5),
    sentiment: SentimentFilter = Query(default="all"),
    date_range: DateRangeFilter = Query(default="all"),
    sort_by: SortField = Query(default="date"),
    sort_order: SortOrder = Query(default="desc"),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    app_id: str = Depends(valid_app_id),
    registry: AnalysisSessionRegistry = Depends(get_registry)
):
    """Filtered, sorted and paginated reviews with sentiment and matched topics."""
    filters = ReviewFilters(search=search, rating=rating, sentiment=sentiment, date_range=date_range)
    return session_transformer(registry, app_id).get_reviews_tab_data(
        filters=filters,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        page_size=page_size
    )


@router.get("/{app_id}/topics", response_model=TopicsTabData)
async def get_topics(
    app_id: str = Depends(valid_app_id),
    registry: AnalysisSessionRegistry = Depends(get_registry)
):
    """Topic breakdown and the reviews mentioning the most common topics."""
    return session_transformer(registry, app_id).get_topics_tab_data()
