"""
Vectorization Job Models

Models Included:
----------------
1. JobStatus (Enum) - Job lifecycle states
2. JobScope (Enum) - Breadth of a job
3. VectorizationJob - Persisted bulk indexing run (the job registry)
4. JobScopeLock - One row per scope currently owned by a live job

Database Tables:
----------------
- admin_jobs: Job registry, also read by the admin UI
- job_scope_locks: Scope-level mutual exclusion

State Machine:
--------------
    pending ──→ running ──→ completed
       │          │  ↑
       │          ↓  │
       │        paused
       │          │
       └────→  failed  ←── (cancel from any non-terminal state)

completed and failed are terminal: no column changes after reaching them.

Concurrency:
------------
The job row is written by two parties: the Celery worker (progress) and the
admin control surface (status). `version_id` is SQLAlchemy's
version_id_col, so every ORM UPDATE is a compare-and-swap on it and a lost
race raises StaleDataError instead of silently overwriting the other write.
`run_attempt` fences workers: only the worker whose attempt matches the row
may advance it.
"""

import enum
from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from brandforge.db.base import BaseModel, JSONType, String50, String255


# ================================
# Enums
# ================================

class JobStatus(str, enum.Enum):
    """Vectorization job lifecycle states."""

    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})


class JobScope(str, enum.Enum):
    """
    Breadth of a vectorization job.

    - ALL_USERS: every user, every content type
    - SINGLE_USER: one user, every content type (exact item estimate)
    - CONTENT_TYPE: every user, one content type
    """

    ALL_USERS = "all_users"
    SINGLE_USER = "single_user"
    CONTENT_TYPE = "content_type"

    def __str__(self) -> str:
        return self.value


VECTORIZATION_JOB_TYPE = "vectorization"


# ================================
# VectorizationJob Model
# ================================

class VectorizationJob(BaseModel):
    """
    One bulk indexing run.

    Counters:
    ---------
    - total_items: estimate at start; replaced by the exact handled count
      (processed + failed + skipped) on completion
    - processed_items: items embedded and stored by this run
    - failed_items: items whose normalize/embed/store raised
    - skipped_items: items already indexed, or with no text

    progress = processed_items / total_items * 100, held below 100 until
    the job completes.

    Resume Cursor:
    --------------
    resume_cursor is the id of the last user whose full content set was
    processed and persisted. A resumed or re-dispatched run starts after it.
    """

    __tablename__ = "admin_jobs"

    job_type: Mapped[str] = mapped_column(
        String50,
        nullable=False,
        default=VECTORIZATION_JOB_TYPE,
        index=True,
        comment="Job kind; the admin list endpoint filters on 'vectorization'"
    )

    scope: Mapped[JobScope] = mapped_column(
        nullable=False,
        comment="all_users, single_user or content_type"
    )

    status: Mapped[JobStatus] = mapped_column(
        nullable=False,
        default=JobStatus.PENDING,
        index=True,
        comment="Lifecycle state"
    )

    # ================================
    # Counters
    # ================================

    total_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processed_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    skipped_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    progress: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    # ================================
    # Timestamps & Operators
    # ================================

    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        comment="When the job was created (UTC)"
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="When the job reached a terminal state (UTC)"
    )
    heartbeat_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Last progress write by a worker (UTC)"
    )

    created_by: Mapped[str] = mapped_column(String255, nullable=False)
    updated_by: Mapped[str | None] = mapped_column(String255, nullable=True)
    cancelled_by: Mapped[str | None] = mapped_column(String255, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    details: Mapped[dict] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
        comment="userId, userEmail, brandName, contentType"
    )

    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # ================================
    # Worker Coordination
    # ================================

    run_attempt: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        comment="Fence number of the worker allowed to drive this job"
    )
    resume_cursor: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
        comment="Id of the last fully processed user"
    )
    version_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Optimistic concurrency token"
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def recompute_progress(self) -> None:
        """Derive progress from counters; 100 is reserved for completion."""
        if self.status == JobStatus.COMPLETED:
            self.progress = 100.0
            return
        if not self.total_items:
            self.progress = 0.0
            return
        pct = self.processed_items / self.total_items * 100
        self.progress = round(min(pct, 99.0), 2)

    def __repr__(self) -> str:
        return (
            f"VectorizationJob(id={self.id}, scope={self.scope}, "
            f"status={self.status}, progress={self.progress})"
        )


# ================================
# JobScopeLock Model
# ================================

class JobScopeLock(BaseModel):
    """
    Scope-level mutual exclusion for vectorization jobs.

    Keys:
    -----
    - "all_users"
    - "single_user:{user_id}"
    - "content_type:{content_type}"

    The row is inserted in the same transaction that creates the job and
    deleted in the same transaction that moves the job to a terminal state.
    A concurrent start on the same key fails on the unique constraint.
    """

    __tablename__ = "job_scope_locks"

    scope_key: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        comment="Canonical scope key"
    )

    job_id: Mapped[int] = mapped_column(
        ForeignKey("admin_jobs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Job that owns the scope"
    )

    def __repr__(self) -> str:
        return f"JobScopeLock(scope_key={self.scope_key!r}, job_id={self.job_id})"
