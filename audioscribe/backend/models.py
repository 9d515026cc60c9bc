"""Database models for users, credits, and job status records."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, Enum, BigInteger
from sqlalchemy.orm import relationship
import enum
from .database import Base


class JobStatus(enum.Enum):
    """Job processing status."""
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class User(Base):
    """User account with a credit balance."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=False, default="")
    credits = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    audio_jobs = relationship("AudioJob", back_populates="user", cascade="all, delete-orphan")
    transactions = relationship("CreditTransaction", back_populates="user", cascade="all, delete-orphan")


class CreditTransaction(Base):
    """Credit addition and usage history."""
    __tablename__ = "credit_transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    amount = Column(Integer, nullable=False)  # Positive for addition, negative for usage
    balance_after = Column(Integer, nullable=False)
    description = Column(String, nullable=False)
    reference = Column(String, nullable=True, index=True)  # Job ID or other idempotency key
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    user = relationship("User", back_populates="transactions")


class AudioJob(Base):
    """Persisted status record of a transcription job."""
    __tablename__ = "audio_jobs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    job_id = Column(String, unique=True, index=True, nullable=False)
    file_name = Column(String, nullable=False)
    file_path = Column(String, nullable=True)
    file_size = Column(BigInteger, nullable=True)
    mime_type = Column(String, nullable=True)
    status = Column(Enum(JobStatus), default=JobStatus.QUEUED, nullable=False)
    current_step = Column(String, nullable=True)
    error = Column(Text, nullable=True)
    transcription = Column(Text, nullable=True)
    credits_used = Column(Integer, nullable=True)
    processing_days = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    user = relationship("User", back_populates="audio_jobs")
