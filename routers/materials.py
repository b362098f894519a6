"""
Materials Router

Course material administration and index maintenance.
Endpoints:
  GET    /courses/{course_id}/materials     - list a course's materials
  POST   /courses/{course_id}/materials     - upload + extract + index
  PUT    /materials/{material_id}           - edit metadata, re-index
  DELETE /materials/{material_id}           - delete row, vectors and file
  POST   /materials/{material_id}/reindex   - re-index one material
  POST   /materials/sync?dry_run=           - reconcile index with the database
"""

import json
import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from sqlalchemy.orm import Session

from database import crud
from database.database import get_db
from database.models import IndexStatus, MaterialType, User
from database.schemas import MaterialResponse, MaterialUpdate, ReconcileResponse
from routers.auth import get_current_user, require_material_admin
from services.container import Services, get_services
from services.errors import NotFoundError, PreconditionError

router = APIRouter(tags=["materials"])

log = logging.getLogger(__name__)


def _parse_weightings(raw: Optional[str]) -> Optional[Dict[str, float]]:
    if not raw:
        return None
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        raise PreconditionError(f"weightings must be a JSON object: {e}") from e
    if not isinstance(value, dict):
        raise PreconditionError("weightings must be a JSON object")
    return value


def _get_material_or_404(db: Session, material_id: int):
    material = crud.get_material(db, material_id)
    if material is None:
        raise NotFoundError(f"Material {material_id} not found")
    return material


@router.get("/courses/{course_id}/materials", response_model=List[MaterialResponse])
async def list_course_materials(
    course_id: int,
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
):
    if crud.get_course(db, course_id) is None:
        raise NotFoundError(f"Course {course_id} not found")
    return crud.get_course_materials(db, course_id)


@router.post("/courses/{course_id}/materials", response_model=MaterialResponse, status_code=201)
async def upload_material(
    course_id: int,
    file: UploadFile = File(..., description="Material file (PDF, DOCX, TXT)"),
    title: str = Form(..., min_length=1, max_length=255),
    type: MaterialType = Form(...),
    description: Optional[str] = Form(None),
    year: Optional[int] = Form(None),
    weightings: Optional[str] = Form(None, description='JSON object, e.g. {"algorithms": 30}'),
    style_notes: Optional[str] = Form(None),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
    current: User = Depends(require_material_admin),
):
    """
    Upload a course material.

    Text is extracted and stored with the row, then the material is indexed.
    Indexing failures don't fail the upload: the row keeps index_status
    "failed" and is picked up by /materials/sync.
    """
    if crud.get_course(db, course_id) is None:
        raise NotFoundError(f"Course {course_id} not found")
    parsed_weightings = _parse_weightings(weightings)

    content = await file.read()
    text = await services.text_extractor.extract(content, file.filename or "")
    stored_name = services.storage.save(content, file.filename or "")

    material = crud.create_material(
        db,
        course_id=course_id,
        title=title,
        description=description,
        type=type,
        content=text,
        year=year,
        weightings=parsed_weightings,
        style_notes=style_notes,
        file_path=stored_name,
        file_size=len(content),
        uploaded_by_id=current.id,
        index_status=IndexStatus.PENDING.value,
    )
    status = await services.indexer.index_and_record(db, material)
    log.info("Material %s uploaded to course %s by user %s (index: %s)", material.id, course_id, current.id, status)
    return material


@router.put("/materials/{material_id}", response_model=MaterialResponse)
async def update_material(
    material_id: int,
    update: MaterialUpdate,
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
    current: User = Depends(require_material_admin),
):
    """Edit metadata. Payload metadata lives on every point, so the material is re-indexed."""
    material = _get_material_or_404(db, material_id)
    changes = update.model_dump(exclude_unset=True)
    if not changes:
        return material
    material = crud.update_material(db, material, changes)
    await services.indexer.index_and_record(db, material)
    return material


@router.delete("/materials/{material_id}")
async def delete_material(
    material_id: int,
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
    current: User = Depends(require_material_admin),
):
    material = _get_material_or_404(db, material_id)
    file_path = material.file_path

    await services.indexer.remove_material(material_id)
    crud.delete_material(db, material)
    if file_path:
        services.storage.delete(file_path)

    log.info("Material %s deleted by user %s", material_id, current.id)
    return {"success": True, "material_id": material_id}


@router.post("/materials/sync", response_model=ReconcileResponse)
async def sync_materials(
    dry_run: bool = Query(False),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
    current: User = Depends(require_material_admin),
):
    """Reconcile the vector index with the course_materials table."""
    report = await services.indexer.reconcile(db, dry_run=dry_run)
    return report.to_dict()


@router.post("/materials/{material_id}/reindex", response_model=MaterialResponse)
async def reindex_material(
    material_id: int,
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
    current: User = Depends(require_material_admin),
):
    material = _get_material_or_404(db, material_id)
    await services.indexer.index_and_record(db, material)
    return material
