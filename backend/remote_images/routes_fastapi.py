"""
Remote Images API Routes

Provides endpoints for:
- Localizing image fields in a batch of content records
- Health check
"""

import logging
import os
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import FetchConfig, timeout_from_env
from .content_store import ContentStore
from .exceptions import InvalidOptionsError, UnsupportedLeafTypeError
from .fetcher import HttpClient
from .plugin import RemoteImagePlugin

logger = logging.getLogger(__name__)

# ============================================
# Configuration
# ============================================

# Downloads land under <PROJECT_ROOT>/<targetPath>
PROJECT_ROOT = os.getenv("REMOTE_IMAGES_PROJECT_ROOT", os.getcwd())
REQUEST_TIMEOUT = timeout_from_env()


def get_http_client() -> Optional[HttpClient]:
    """HTTP client for downloads; None lets the fetcher create its own."""
    return None


# ============================================
# Request/Response Models
# ============================================


class LocalizeRequest(BaseModel):
    """Request model for localizing a batch of records."""
    type_name: str = Field(..., min_length=1, description="Content type of the records")
    source_field: str = Field(..., min_length=1, description="Dotted path to the image field")
    records: List[Any] = Field(..., description="Content records to process")
    options: Dict[str, Any] = Field(default_factory=dict, description="Extra plugin options")


class LocalizeResponse(BaseModel):
    """Response model for a localize call."""
    success: bool
    type_name: str
    total_records: int
    stats: Dict[str, int]
    records: List[Any]


# ============================================
# Router
# ============================================

router = APIRouter(prefix="/api/remote-images", tags=["Remote Images"])


# ============================================
# Endpoints
# ============================================


@router.post("/localize", response_model=LocalizeResponse)
async def localize_images(
    request: LocalizeRequest,
    http: Optional[HttpClient] = Depends(get_http_client),
):
    """
    Download remote images referenced by the records.

    Example:
        POST /api/remote-images/localize
        {
            "type_name": "Post",
            "source_field": "seo.images",
            "records": [{"seo": {"images": ["https://example.com/a.jpg"]}}],
            "options": {"original": true}
        }
    """
    user_options = {
        key: value
        for key, value in request.options.items()
        if key not in ("projectRoot", "project_root")
    }
    options = {
        "timeout": REQUEST_TIMEOUT,
        **user_options,
        "projectRoot": PROJECT_ROOT,
        "typeName": request.type_name,
        "sourceField": request.source_field,
    }

    try:
        config = FetchConfig.from_options(options)
    except InvalidOptionsError as e:
        raise HTTPException(status_code=400, detail=e.problems)

    store = ContentStore()
    store.add_collection(config.type_name, request.records)

    plugin = RemoteImagePlugin(store, config, http=http)
    try:
        records = await plugin.update_nodes()
    except UnsupportedLeafTypeError as e:
        raise HTTPException(status_code=422, detail=str(e))

    stats = {kind.value: count for kind, count in plugin.last_stats.items()}

    return LocalizeResponse(
        success=True,
        type_name=config.type_name,
        total_records=len(records),
        stats=stats,
        records=records,
    )


@router.get("/health")
async def health_check():
    """Health check endpoint."""
    return JSONResponse(content={
        "status": "healthy",
        "service": "remote-images",
    })
