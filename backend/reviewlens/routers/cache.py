"""Analysis cache API endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Request, status

from reviewlens.cache.cache_facade import CacheFacade
from reviewlens.exceptions import CacheError
from reviewlens.models.schemas import CacheStatus, MessageResponse

router = APIRouter()


def get_cache_facade(request: Request) -> CacheFacade:
    return request.app.state.cache_facade


@router.get("/status", response_model=CacheStatus)
async def cache_status(cache: CacheFacade = Depends(get_cache_facade)):
    """Entry count and storage usage of the analysis cache."""
    return await cache.refresh_status()


@router.delete("", response_model=MessageResponse)
async def clear_cache(cache: CacheFacade = Depends(get_cache_facade)):
    """Delete every cached analysis and progress snapshot."""
    try:
        await cache.clear_cache()
    except CacheError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))

    if not cache.status.is_ready:
        return MessageResponse(message="Cache unavailable", detail="Nothing cleared; the analysis cache is not open")

    return MessageResponse(
        message="Cache cleared",
        detail=f"{cache.status.item_count} entries, {cache.status.total_size} bytes in use"
    )
