from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from atlas_submittals.api.deps import get_ingestion_service
from atlas_submittals.config import settings
from atlas_submittals.services.ingestion import IngestionService

router = APIRouter(prefix="/datasets", tags=["Datasets"])


def _require_dataset(key: str, svc: IngestionService) -> None:
    if key not in svc.datasets:
        raise HTTPException(status_code=404, detail=f"Unknown dataset '{key}'")


@router.get("")
def list_datasets(svc: IngestionService = Depends(get_ingestion_service)):
    return {"datasets": svc.status()}


@router.get("/{key}/records")
def dataset_records(
    key: str,
    status: Optional[str] = Query(None, description="Only records with this canonical status"),
    svc: IngestionService = Depends(get_ingestion_service),
):
    _require_dataset(key, svc)
    records = svc.get(key)
    if status:
        records = [r for r in records if r.current_status == status]
    return {
        "dataset": key,
        "count": len(records),
        "records": [r.model_dump(mode="json", by_alias=True) for r in records],
    }


@router.post("/{key}/refresh")
def refresh_dataset(key: str, svc: IngestionService = Depends(get_ingestion_service)):
    _require_dataset(key, svc)
    return svc.force_refresh(key).to_dict()


@router.get("/{key}/diagnostics")
def dataset_diagnostics(
    key: str,
    severity: Optional[str] = Query(None, pattern="^(warning|error)$"),
    svc: IngestionService = Depends(get_ingestion_service),
):
    _require_dataset(key, svc)
    diagnostics = svc.diagnostics(key)
    if severity:
        diagnostics = [d for d in diagnostics if d.severity.value == severity]
    return {
        "dataset": key,
        "count": len(diagnostics),
        "diagnostics": [d.to_dict() for d in diagnostics],
    }


@router.put("/{key}/upload")
async def upload_dataset(
    key: str,
    request: Request,
    x_filename: Optional[str] = Header(None, alias="X-Filename"),
    x_uploaded_by: Optional[str] = Header(None, alias="X-Uploaded-By"),
    svc: IngestionService = Depends(get_ingestion_service),
):
    _require_dataset(key, svc)
    content = await request.body()
    max_bytes = settings.security.max_upload_mb * 1024 * 1024
    if max_bytes and len(content) > max_bytes:
        raise HTTPException(status_code=413, detail=f"File too large; max {settings.security.max_upload_mb}MB")
    file_name = x_filename or svc.datasets[key].file_name

    summary = await run_in_threadpool(svc.accept_upload, key, file_name, content, uploaded_by=x_uploaded_by)
    if not summary.accepted:
        return JSONResponse(status_code=422, content={"error": "invalid_upload", **summary.to_dict()})
    return summary.to_dict()


@router.get("/{key}/uploads")
def upload_history(
    key: str,
    limit: int = Query(20, ge=1, le=200),
    svc: IngestionService = Depends(get_ingestion_service),
):
    _require_dataset(key, svc)
    return {"dataset": key, "uploads": svc.upload_history(key, limit=limit)}
