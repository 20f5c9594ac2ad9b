from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from infra.db.session import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)

class FileRecord(Base):
    __tablename__ = "files"
    id = Column(String, primary_key=True)
    type = Column(String(20), nullable=False)   # 'cv' | 'report'
    path = Column(String(500), nullable=False)
    name = Column(String, nullable=False)
    checksum = Column(String(64), nullable=False)  # sha256, set once at upload
    created_at = Column(DateTime, default=utcnow)

class JobRecord(Base):
    __tablename__ = "jobs"
    id = Column(String, primary_key=True)
    status = Column(String(20), nullable=False, default="queued")
    job_title = Column(String, nullable=False)
    cv_file_id = Column(String, ForeignKey("files.id"), nullable=False)
    report_file_id = Column(String, ForeignKey("files.id"), nullable=False)
    error_code = Column(String, nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    retryable = Column(Boolean, nullable=False, default=True)  # false once a failure was terminal
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    artifacts = relationship("JobArtifactRecord", back_populates="job",
                             cascade="all, delete-orphan", passive_deletes=True)

class JobArtifactRecord(Base):
    __tablename__ = "job_artifacts"
    __table_args__ = (UniqueConstraint("job_id", "stage", name="uq_job_artifacts_job_stage"),)
    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(String, ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True)
    stage = Column(String(2), nullable=False)  # 'A' | 'B' | 'C'
    payload = Column(JSON, nullable=False)
    version = Column(String(20), nullable=False, default="1.0")
    created_at = Column(DateTime, default=utcnow)
    job = relationship("JobRecord", back_populates="artifacts")

class ReferenceDocumentRecord(Base):
    __tablename__ = "documents"
    id = Column(String, primary_key=True)
    type = Column(String(50), nullable=False)
    version = Column(String(20), nullable=False, default="1.0")
    path = Column(String(500), nullable=False)
    content_hash = Column(String(64), nullable=False, unique=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    chunks = relationship("ChunkReferenceRecord", back_populates="document",
                          cascade="all, delete-orphan", passive_deletes=True)

class ChunkReferenceRecord(Base):
    __tablename__ = "chunk_references"
    id = Column(Integer, primary_key=True, autoincrement=True)
    document_id = Column(String, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    chunk_id = Column(String(100), nullable=False)
    vector_ref = Column(String(100), nullable=False)  # application id of the index point
    meta = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime, default=utcnow)
    document = relationship("ReferenceDocumentRecord", back_populates="chunks")
