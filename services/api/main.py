from __future__ import annotations

import logging
import uuid
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from material_workbook.engine import build_engine
from material_workbook.errors import (
    ConflictError,
    NotFoundError,
    StateError,
    StorageError,
    ValidationError,
    WorkbookError,
)
from material_workbook.logging_config import set_request_id, setup_logging
from material_workbook.models.bundle import BundleMembershipChange, BundleStatusChange, MaterialBundle
from material_workbook.models.comparison import JobComparison
from material_workbook.models.item import ItemStatus, MaterialItem
from material_workbook.models.sheet import MaterialSheet
from material_workbook.models.workbook import WorkbookVersion
from material_workbook.settings import load_settings


class ForkResponse(BaseModel):
    locked: WorkbookVersion
    working: WorkbookVersion


class AddSheetRequest(BaseModel):
    name: str
    description: str | None = None
    is_option: bool = False


class AddItemRequest(BaseModel):
    name: str
    category: str | None = None
    quantity: Any = 1
    unit_cost: Any = None
    markup_percent: Any = None
    unit_price: Any = None
    length: str | None = None
    sku: str | None = None
    usage: str | None = None
    color: str | None = None
    notes: str | None = None
    taxable: bool = True


class EditItemFieldRequest(BaseModel):
    field: str
    value: Any = None


class CreateBundleRequest(BaseModel):
    name: str
    item_ids: list[str] = Field(default_factory=list)
    description: str | None = None


class BundleStatusRequest(BaseModel):
    status: ItemStatus


class BundleItemsRequest(BaseModel):
    item_ids: list[str]


settings = load_settings()

# Setup logging
setup_logging(environment=settings.environment, project_id=settings.project_id)
logger = logging.getLogger(__name__)

app = FastAPI(title="Material Workbook API", version="0.1.0")
engine = build_engine(settings)


@app.middleware("http")
async def assign_request_id(request: Request, call_next):
    set_request_id(request.headers.get("x-request-id") or str(uuid.uuid4()))
    return await call_next(request)


@app.exception_handler(WorkbookError)
async def workbook_error_handler(request: Request, exc: WorkbookError) -> JSONResponse:
    if isinstance(exc, ValidationError):
        status_code = 422
    elif isinstance(exc, NotFoundError):
        status_code = 404
    elif isinstance(exc, ConflictError):
        status_code = 409
    elif isinstance(exc, StorageError):
        status_code = 503
    else:
        status_code = 500
    if isinstance(exc, StateError):
        logger.error("Workbook invariant violated", extra={"path": request.url.path, "error": str(exc)})
    return JSONResponse(
        status_code=status_code,
        content={
            "error": type(exc).__name__,
            "detail": str(exc),
            "field": getattr(exc, "field", None),
            "retryable": exc.retryable,
        },
    )


@app.post("/v1/jobs/{job_id}/workbook", response_model=WorkbookVersion)
async def start_workbook(job_id: str) -> WorkbookVersion:
    return engine.start_workbook(job_id)


@app.get("/v1/jobs/{job_id}/workbook", response_model=WorkbookVersion)
async def get_working_version(job_id: str) -> WorkbookVersion:
    version = engine.get_working_version(job_id)
    if version is None:
        raise HTTPException(status_code=404, detail="Job has no working material workbook")
    return version


@app.get("/v1/jobs/{job_id}/versions", response_model=list[WorkbookVersion])
async def list_versions(job_id: str) -> list[WorkbookVersion]:
    return list(engine.list_versions(job_id))


@app.post("/v1/jobs/{job_id}/workbook:lock", response_model=ForkResponse)
async def lock_and_fork(job_id: str) -> ForkResponse:
    result = engine.lock_and_fork(job_id)
    return ForkResponse(locked=result.locked, working=result.working)


@app.get("/v1/jobs/{job_id}/comparison", response_model=JobComparison)
async def compare_job_materials(job_id: str) -> JobComparison:
    return engine.compare_job_materials(job_id)


@app.get("/v1/workbooks/{version_id}/sheets", response_model=list[MaterialSheet])
async def list_sheets(version_id: str) -> list[MaterialSheet]:
    return list(engine.list_sheets(version_id))


@app.post("/v1/workbooks/{version_id}/sheets", response_model=MaterialSheet)
async def add_sheet(version_id: str, request: AddSheetRequest) -> MaterialSheet:
    return engine.add_sheet(
        version_id,
        request.name,
        description=request.description,
        is_option=request.is_option,
    )


@app.get("/v1/sheets/{sheet_id}/items", response_model=list[MaterialItem])
async def list_sheet_items(sheet_id: str) -> list[MaterialItem]:
    return list(engine.list_sheet_items(sheet_id))


@app.post("/v1/sheets/{sheet_id}/items", response_model=MaterialItem)
async def add_item(sheet_id: str, request: AddItemRequest) -> MaterialItem:
    fields = request.model_dump(exclude={"name"})
    return engine.add_item(sheet_id, request.name, **fields)


@app.patch("/v1/items/{item_id}", response_model=MaterialItem)
async def edit_item_field(item_id: str, request: EditItemFieldRequest) -> MaterialItem:
    return engine.edit_item_field(item_id, request.field, request.value)


@app.post("/v1/jobs/{job_id}/bundles", response_model=MaterialBundle)
async def create_bundle(job_id: str, request: CreateBundleRequest) -> MaterialBundle:
    return engine.create_bundle(job_id, request.name, request.item_ids, description=request.description)


@app.get("/v1/jobs/{job_id}/bundles", response_model=list[MaterialBundle])
async def list_bundles(job_id: str) -> list[MaterialBundle]:
    return list(engine.list_bundles(job_id))


@app.put("/v1/bundles/{bundle_id}/status", response_model=BundleStatusChange)
async def set_bundle_status(bundle_id: str, request: BundleStatusRequest) -> BundleStatusChange:
    return engine.set_bundle_status(bundle_id, request.status)


@app.post("/v1/bundles/{bundle_id}/items:add", response_model=BundleMembershipChange)
async def add_items_to_bundle(bundle_id: str, request: BundleItemsRequest) -> BundleMembershipChange:
    return engine.add_items_to_bundle(bundle_id, request.item_ids)


@app.post("/v1/bundles/{bundle_id}/items:remove", response_model=BundleMembershipChange)
async def remove_items_from_bundle(bundle_id: str, request: BundleItemsRequest) -> BundleMembershipChange:
    return engine.remove_items_from_bundle(bundle_id, request.item_ids)


@app.get("/health")
async def healthcheck() -> JSONResponse:
    return JSONResponse({"status": "ok"})
