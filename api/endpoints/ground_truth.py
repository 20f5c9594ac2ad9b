import os
from fastapi import APIRouter, Depends, HTTPException
from app.container import Container
from api.deps import get_container
from domain.schemas import (
    DocumentListResponse,
    IngestDirectoryRequest,
    IngestDirectoryResponse,
    IngestDocumentRequest,
    IngestFailure,
    ReconcileResponse,
    ReferenceDocumentOut,
    UpdateDocumentRequest,
)

router = APIRouter(prefix="/ground-truth")


def _require_file(path: str) -> None:
    if not os.path.isfile(path):
        raise HTTPException(status_code=404, detail=f"file not found: {path}")


@router.post("/documents", response_model=ReferenceDocumentOut)
async def ingest_document(body: IngestDocumentRequest, container: Container = Depends(get_container)):
    _require_file(body.path)
    return await container.ingestion.ingest(body.path, body.document_type.value, body.version)


@router.post("/directory", response_model=IngestDirectoryResponse)
async def ingest_directory(body: IngestDirectoryRequest, container: Container = Depends(get_container)):
    path = body.path or container.settings.GROUND_TRUTH_DIR
    if not os.path.isdir(path):
        raise HTTPException(status_code=400, detail=f"not a directory: {path}")
    report = await container.ingestion.ingest_directory(path)
    return IngestDirectoryResponse(
        documents=[ReferenceDocumentOut.model_validate(d) for d in report.documents],
        failures=[IngestFailure(file=f, error=e) for f, e in report.failures],
        count=len(report.documents),
    )


@router.get("/documents", response_model=DocumentListResponse)
async def list_documents(container: Container = Depends(get_container)):
    return DocumentListResponse(
        documents=[ReferenceDocumentOut.model_validate(d) for d in container.ingestion.list_documents()],
        stats=container.ingestion.stats(),
    )


@router.put("/documents/{document_id}", response_model=ReferenceDocumentOut)
async def update_document(document_id: str, body: UpdateDocumentRequest,
                          container: Container = Depends(get_container)):
    _require_file(body.path)
    return await container.ingestion.update(document_id, body.path, body.version)


@router.delete("/documents/{document_id}")
async def delete_document(document_id: str, container: Container = Depends(get_container)):
    await container.ingestion.delete(document_id)
    return {"deleted": document_id}


@router.post("/reconcile", response_model=ReconcileResponse)
async def reconcile(purge: bool = False, container: Container = Depends(get_container)):
    report = await container.ingestion.reconcile(purge=purge)
    return ReconcileResponse(checked=report.checked, orphaned_chunk_ids=report.orphaned_chunk_ids,
                             purged=report.purged)


@router.get("/test")
async def retrieval_self_test(container: Container = Depends(get_container)):
    results = await container.retriever.self_test()
    return {stage: ctx.model_dump() for stage, ctx in results.items()}
