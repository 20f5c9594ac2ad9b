import os
from fastapi import APIRouter, Depends, UploadFile, File, HTTPException
from app.container import Container
from api.deps import get_container
from domain.schemas import FileKind, UploadResponse
from infra.storage import save_upload, sha256_hex

router = APIRouter()

ALLOWED_SUFFIXES = (".pdf", ".txt", ".md")


async def _store(container: Container, upload: UploadFile, kind: FileKind) -> str:
    name = upload.filename or f"{kind.value}.pdf"
    if not name.lower().endswith(ALLOWED_SUFFIXES):
        raise HTTPException(status_code=400, detail=f"'{kind.value}' must be a PDF document")
    content = await upload.read()
    if not content:
        raise HTTPException(status_code=400, detail=f"'{kind.value}' is empty")
    if len(content) > container.settings.MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail=f"'{kind.value}' exceeds the upload size limit")
    path = save_upload(container.settings.STORAGE_DIR, kind.value, name, content)
    return container.files.save(ftype=kind.value, path=path, name=os.path.basename(name),
                                checksum=sha256_hex(content))


@router.post("/upload", response_model=UploadResponse)
async def upload(cv: UploadFile = File(...), report: UploadFile = File(...),
                 container: Container = Depends(get_container)) -> UploadResponse:
    cv_id = await _store(container, cv, FileKind.CV)
    report_id = await _store(container, report, FileKind.REPORT)
    return UploadResponse(cv_id=cv_id, report_id=report_id)
