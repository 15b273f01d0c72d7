"""FastAPI application entrypoint for cascadedocs service mode."""

from __future__ import annotations

import asyncio
import math
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, TypeVar

import uvicorn
from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..config import CONFIG_FILENAME
from ..errors import CascadeDocsError, InvalidResponse, NotFound, ProviderError, RateLimited
from ..orchestrator import Orchestrator

T = TypeVar("T")


class HealthResponse(BaseModel):
    status: str


class ModuleSummary(BaseModel):
    slug: str
    name: str
    summary: str
    total_files: int
    documented_files: int
    undocumented_files: int
    last_synced: Optional[str] = None


class ModuleDetail(ModuleSummary):
    files: List[str]
    undocumented: List[str]
    last_updated: Optional[str] = None
    content_exists: bool = False


class AssignRequest(BaseModel):
    dry_run: bool = False
    force: bool = False


class AssignResponse(BaseModel):
    dry_run: bool
    ai_called: bool
    analysis_performed: bool
    plan: Dict[str, Any]


class UpdateChangedRequest(BaseModel):
    from_sha: Optional[str] = None
    to_sha: Optional[str] = None


class UpdateChangedResponse(BaseModel):
    status: str
    from_sha: Optional[str] = None
    to_sha: Optional[str] = None
    files: List[Dict[str, Any]] = []
    modules: List[Dict[str, Any]] = []
    failures: List[Dict[str, Any]] = []


def _default_orchestrator() -> Orchestrator:
    return Orchestrator.from_path(Path.cwd() / CONFIG_FILENAME)


async def _in_executor(func: Callable[[], T]) -> T:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, func)


def create_app(
    orchestrator_factory: Callable[[], Orchestrator] = _default_orchestrator,
) -> FastAPI:
    """Create the FastAPI application exposing cascadedocs operations."""

    app = FastAPI(title="CascadeDocs Service", version="0.1.0")

    async def get_orchestrator() -> Orchestrator:
        return orchestrator_factory()

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(status="ok")

    @app.get("/modules", response_model=List[ModuleSummary])
    async def list_modules(
        orchestrator: Orchestrator = Depends(get_orchestrator),
    ) -> List[ModuleSummary]:
        records = await _in_executor(orchestrator.list_modules)
        return [
            ModuleSummary(
                slug=record.slug,
                name=record.name,
                summary=record.summary,
                last_synced=record.last_synced,
                **record.statistics(),
            )
            for record in records
        ]

    @app.get("/modules/{slug}", response_model=ModuleDetail)
    async def get_module(
        slug: str,
        orchestrator: Orchestrator = Depends(get_orchestrator),
    ) -> ModuleDetail:
        report = await _in_executor(lambda: orchestrator.module_status(slug))
        return ModuleDetail(
            slug=report["slug"],
            name=report["name"],
            summary=report["summary"],
            last_synced=report["last_synced"],
            last_updated=report["last_updated"],
            total_files=report["total_files"],
            documented_files=report["documented_files"],
            undocumented_files=report["undocumented_files"],
            files=report["files"],
            undocumented=report["undocumented"],
            content_exists=bool(report.get("content_exists")),
        )

    @app.post("/assign", response_model=AssignResponse)
    async def assign(
        payload: AssignRequest,
        orchestrator: Orchestrator = Depends(get_orchestrator),
    ) -> AssignResponse:
        result = await _in_executor(
            lambda: orchestrator.assign_files(dry_run=payload.dry_run, force=payload.force)
        )
        return AssignResponse(
            dry_run=result.dry_run,
            ai_called=result.ai_called,
            analysis_performed=result.analysis_performed,
            plan=result.plan.to_dict(),
        )

    @app.post("/update-changed", response_model=UpdateChangedResponse)
    async def update_changed(
        payload: UpdateChangedRequest,
        orchestrator: Orchestrator = Depends(get_orchestrator),
    ) -> UpdateChangedResponse:
        summary = await _in_executor(
            lambda: orchestrator.update_changed(from_sha=payload.from_sha, to_sha=payload.to_sha)
        )
        if summary.up_to_date:
            status = "up_to_date"
        else:
            status = "ok" if summary.ok else "failed"
        data = summary.to_dict()
        return UpdateChangedResponse(
            status=status,
            from_sha=summary.from_sha,
            to_sha=summary.to_sha,
            files=data["files"],
            modules=data["modules"],
            failures=data["failures"],
        )

    @app.exception_handler(NotFound)
    async def not_found_handler(_: Any, exc: NotFound) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(InvalidResponse)
    async def invalid_response_handler(_: Any, exc: InvalidResponse) -> JSONResponse:
        return JSONResponse(status_code=502, content={"detail": str(exc)})

    @app.exception_handler(RateLimited)
    async def rate_limited_handler(_: Any, exc: RateLimited) -> JSONResponse:
        headers: Dict[str, str] = {}
        if exc.retry_after is not None:
            headers["Retry-After"] = str(max(1, math.ceil(exc.retry_after)))
        return JSONResponse(status_code=429, content={"detail": str(exc)}, headers=headers)

    @app.exception_handler(ProviderError)
    async def provider_error_handler(_: Any, exc: ProviderError) -> JSONResponse:
        return JSONResponse(status_code=502, content={"detail": str(exc)})

    @app.exception_handler(CascadeDocsError)
    async def cascadedocs_error_handler(_: Any, exc: CascadeDocsError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    return app


def run_service(
    host: str = "127.0.0.1", port: int = 8000, config_path: Path | None = None
) -> None:  # pragma: no cover - integration path
    if config_path is not None:
        resolved = Path(config_path)
        app = create_app(lambda: Orchestrator.from_path(resolved))
    else:
        app = create_app()
    uvicorn.run(app, host=host, port=port)


__all__ = ["create_app", "run_service"]
