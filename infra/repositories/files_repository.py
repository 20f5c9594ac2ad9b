import uuid
from typing import Optional
from sqlalchemy.orm import sessionmaker
from infra.db.session import SessionLocal
from infra.db.models import FileRecord

class FilesRepository:
    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self.session_factory = session_factory

    def save(self, ftype: str, path: str, name: str, checksum: str) -> str:
        fid = f"file_{uuid.uuid4().hex}"
        with self.session_factory() as s:
            s.add(FileRecord(id=fid, type=ftype, path=path, name=name, checksum=checksum))
            s.commit()
        return fid

    def get(self, file_id: str, kind: Optional[str] = None) -> Optional[FileRecord]:
        with self.session_factory() as s:
            rec = s.get(FileRecord, file_id)
            if rec is None or (kind is not None and rec.type != kind):
                return None
            return rec

    def exists(self, file_id: str, kind: Optional[str] = None) -> bool:
        return self.get(file_id, kind) is not None

