from __future__ import annotations

from fastapi import APIRouter, Depends
from starlette.responses import Response

from usage_sentinel.dependencies import get_runtime
from usage_sentinel.runtime import Runtime

router = APIRouter(tags=["metrics"])


@router.get("/metrics", include_in_schema=False)
async def metrics(runtime: Runtime = Depends(get_runtime)) -> Response:
    return Response(
        content=runtime.metrics.render(),
        media_type=runtime.metrics.content_type,
        headers={"Cache-Control": "no-cache"},
    )
