from __future__ import annotations

from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request

from usage_sentinel.core.sources.base import UsageSource
from usage_sentinel.runtime import Runtime


@dataclass(slots=True)
class SourceContext:
    runtime: Runtime
    source: UsageSource


def get_runtime(request: Request) -> Runtime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Runtime is not ready")
    return runtime


def get_source_context(name: str, runtime: Runtime = Depends(get_runtime)) -> SourceContext:
    source = runtime.source(name)
    if source is None:
        raise HTTPException(status_code=404, detail=f"Unknown source: {name}")
    return SourceContext(runtime=runtime, source=source)
