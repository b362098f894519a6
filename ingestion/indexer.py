"""
Material Indexer
Keeps the vector index in step with the course_materials table.

index_material:  chunk → embed (passage mode) → replace the material's points
reconcile:       diff indexed material ids against the relational store,
                 delete orphans, re-index missing materials
                 and retry materials whose last indexing failed

The relational row is authoritative. Index failures are recorded on the row
(index_status = "failed") and never undo the row itself.
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from database import crud
from database.models import CourseMaterial, IndexStatus
from embeddings.generator import EmbeddingClient
from embeddings.qdrant_manager import VectorIndex
from ingestion.chunker import TextChunker
from services.errors import UpstreamServiceError

log = logging.getLogger(__name__)

RETRY_STATUSES = (IndexStatus.FAILED.value, IndexStatus.PENDING.value)


@dataclass
class ReconcileReport:
    dry_run: bool
    index_material_count: int = 0
    record_material_count: int = 0
    orphaned: List[int] = field(default_factory=list)
    missing: List[int] = field(default_factory=list)
    reindexed: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        return {
            "dry_run": data["dry_run"],
            "index_material_count": data["index_material_count"],
            "record_material_count": data["record_material_count"],
            "orphaned_material_ids": data["orphaned"],
            "missing_material_ids": data["missing"],
            "reindexed_material_ids": data["reindexed"],
            "failed_material_ids": data["failed"],
        }


class MaterialIndexer:
    def __init__(self, embedder: EmbeddingClient, index: VectorIndex, chunker: TextChunker):
        self.embedder = embedder
        self.index = index
        self.chunker = chunker

    @property
    def enabled(self) -> bool:
        return self.index.enabled

    @staticmethod
    def material_payload(material: CourseMaterial) -> Dict[str, Any]:
        """Metadata copied onto every point of the material."""
        material_type = material.type.value if hasattr(material.type, "value") else str(material.type)
        return {
            "type": material_type,
            "title": material.title,
            "description": material.description,
            "year": material.year,
            "weightings": material.weightings,
            "style_notes": material.style_notes,
        }

    async def index_material(self, material: CourseMaterial) -> int:
        """
        Replace all points of one material. Raises on embedding/index failure.

        Returns:
            Number of chunks indexed
        """
        chunks = self.chunker.chunk(material.content or "")
        if not chunks:
            await self.index.delete_material(material.id)
            log.warning("Material %s has no content to index", material.id)
            return 0

        # Embedded text carries the material title
        texts = [f"{material.title}\n{chunk.text}" for chunk in chunks]
        vectors = await self.embedder.embed_passages(texts)
        return await self.index.upsert(
            material_id=material.id,
            course_id=material.course_id,
            chunks=chunks,
            vectors=vectors,
            payload=self.material_payload(material),
        )

    async def index_and_record(self, db: Session, material: CourseMaterial) -> str:
        """
        Index a material and store the outcome on its row.
        Upstream failures are logged, not raised.
        """
        if not self.enabled:
            crud.set_material_index_status(db, material, IndexStatus.DISABLED.value)
            return IndexStatus.DISABLED.value

        try:
            count = await self.index_material(material)
        except UpstreamServiceError as e:
            log.error(
                "Indexing failed for material %s (course %s): %s; left for reconciliation",
                material.id, material.course_id, e,
            )
            crud.set_material_index_status(db, material, IndexStatus.FAILED.value)
            return IndexStatus.FAILED.value

        status = IndexStatus.INDEXED.value if count else IndexStatus.PENDING.value
        crud.set_material_index_status(db, material, status)
        return status

    async def remove_material(self, material_id: int) -> None:
        """Delete a material's points. Failure is logged; reconcile deletes orphans later."""
        try:
            await self.index.delete_material(material_id)
        except UpstreamServiceError as e:
            log.error("Could not delete vectors for material %s: %s; left for reconciliation", material_id, e)

    async def reconcile(
        self,
        db: Session,
        materials: Optional[Sequence[CourseMaterial]] = None,
        dry_run: bool = False,
    ) -> ReconcileReport:
        """
        Repair drift between the relational store and the index.

        Args:
            db: Session used to record index_status of re-indexed materials
            materials: Authoritative material set (defaults to every row)
            dry_run: Only compute the diff
        """
        report = ReconcileReport(dry_run=dry_run)
        if not self.enabled:
            log.info("Vector index disabled; nothing to reconcile")
            return report

        if materials is None:
            materials = crud.get_all_materials(db)
        by_id = {m.id: m for m in materials}
        indexed_ids = await self.index.list_material_ids()

        report.index_material_count = len(indexed_ids)
        report.record_material_count = len(by_id)
        report.orphaned = sorted(indexed_ids - set(by_id))
        # Points of a failed or pending material may be stale even when present
        report.missing = sorted(
            mid for mid, m in by_id.items()
            if (m.content or "").strip()
            and (mid not in indexed_ids or m.index_status in RETRY_STATUSES)
        )

        log.info(
            "Reconcile: %s indexed, %s records, %s orphaned, %s missing%s",
            report.index_material_count, report.record_material_count,
            len(report.orphaned), len(report.missing), " (dry run)" if dry_run else "",
        )
        if dry_run:
            return report

        if report.orphaned:
            await self.index.delete_materials(report.orphaned)

        for material_id in report.missing:
            status = await self.index_and_record(db, by_id[material_id])
            if status == IndexStatus.INDEXED.value:
                report.reindexed.append(material_id)
            else:
                report.failed.append(material_id)

        return report
