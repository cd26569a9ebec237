from __future__ import annotations

import json
import sqlite3
import threading
from pathlib import Path

from common.utils import now_utc_iso

from spotlight.models import (
    TERMINAL_JOB_STATUSES,
    AnalysisJob,
    AnalysisKind,
    AnalysisResult,
    Banner,
    BannerDraft,
    BannerOrigin,
    BannerSummary,
    ImagePayload,
    JobMetadata,
    JobStatus,
    Member,
    MemberUpsertRequest,
)

BANNER_SUMMARY_COLUMNS = """
    id,
    date,
    title,
    description,
    topic_summary,
    origin_source,
    origin_generated_at,
    origin_category,
    engagement_score,
    created_at
"""

BANNER_COLUMNS = (
    BANNER_SUMMARY_COLUMNS
    + """,
    body,
    image_url,
    image_content_type,
    length(image_bytes) AS image_size,
    status,
    expires_at
"""
)

JOB_COLUMNS = """
    id,
    subject_user_id,
    source_user_id,
    kind,
    status,
    result_json,
    metadata_json,
    error,
    created_at,
    updated_at
"""


class BannerConflictError(Exception):
    """Another banner already holds the date being inserted."""


class JobConflictError(Exception):
    """A job with the requested id already exists."""


class JobTransitionError(Exception):
    """The job is unknown or no longer pending."""


class SpotlightRepository:
    def __init__(self, database_path: str) -> None:
        self.database_path = Path(database_path)
        self._connection: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    @property
    def connection(self) -> sqlite3.Connection:
        if self._connection is None:
            raise RuntimeError("Database connection is not initialized")
        return self._connection

    def connect(self) -> None:
        with self._lock:
            self.database_path.parent.mkdir(parents=True, exist_ok=True)
            self._connection = sqlite3.connect(self.database_path, check_same_thread=False)
            self._connection.row_factory = sqlite3.Row
            self._connection.executescript(
                """
                CREATE TABLE IF NOT EXISTS banners (
                    id TEXT PRIMARY KEY,
                    date TEXT NOT NULL UNIQUE,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL,
                    body TEXT NOT NULL,
                    topic_summary TEXT NOT NULL,
                    image_url TEXT NOT NULL,
                    image_bytes BLOB NOT NULL,
                    image_content_type TEXT NOT NULL DEFAULT 'image/jpeg',
                    origin_source TEXT NOT NULL,
                    origin_generated_at TEXT NOT NULL,
                    origin_category TEXT,
                    engagement_score INTEGER NOT NULL DEFAULT 0,
                    status TEXT NOT NULL DEFAULT 'active',
                    expires_at TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_banners_status_expires
                    ON banners (status, expires_at);

                CREATE TABLE IF NOT EXISTS members (
                    user_id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    role TEXT,
                    department TEXT,
                    bio TEXT,
                    linkedin_profile TEXT,
                    twitter_profile TEXT,
                    skills_json TEXT NOT NULL DEFAULT '[]',
                    experience_level TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS analysis_jobs (
                    id TEXT PRIMARY KEY,
                    subject_user_id TEXT NOT NULL,
                    source_user_id TEXT,
                    kind TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    result_json TEXT,
                    metadata_json TEXT NOT NULL DEFAULT '{}',
                    error TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_analysis_jobs_subject
                    ON analysis_jobs (subject_user_id, kind, created_at);
                """
            )
            self._connection.commit()

    def close(self) -> None:
        with self._lock:
            if self._connection is None:
                return
            self._connection.close()
            self._connection = None

    def get_active_banner(self, day: str) -> Banner | None:
        with self._lock:
            row = self.connection.execute(
                f"SELECT {BANNER_COLUMNS} FROM banners WHERE date = ? AND status = 'active'",
                (day,),
            ).fetchone()
            if row is None:
                return None
            return self._to_banner(row)

    def get_banner_for_date(self, day: str) -> Banner | None:
        with self._lock:
            row = self.connection.execute(
                f"SELECT {BANNER_COLUMNS} FROM banners WHERE date = ?",
                (day,),
            ).fetchone()
            if row is None:
                return None
            return self._to_banner(row)

    def insert_banner(self, banner_id: str, draft: BannerDraft) -> Banner:
        with self._lock:
            try:
                self.connection.execute(
                    """
                    INSERT INTO banners (
                        id,
                        date,
                        title,
                        description,
                        body,
                        topic_summary,
                        image_url,
                        image_bytes,
                        image_content_type,
                        origin_source,
                        origin_generated_at,
                        origin_category,
                        engagement_score,
                        status,
                        expires_at,
                        created_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        banner_id,
                        draft.date,
                        draft.title,
                        draft.description,
                        draft.body,
                        draft.topic_summary,
                        draft.image_url,
                        sqlite3.Binary(draft.image.data),
                        draft.image.content_type,
                        draft.origin.source,
                        draft.origin.generated_at,
                        draft.origin.category,
                        draft.origin.engagement_score,
                        draft.status,
                        draft.expires_at,
                        now_utc_iso(),
                    ),
                )
            except sqlite3.IntegrityError as exc:
                self.connection.rollback()
                raise BannerConflictError(f"A banner already exists for {draft.date}") from exc
            self.connection.commit()
            row = self.connection.execute(
                f"SELECT {BANNER_COLUMNS} FROM banners WHERE id = ?",
                (banner_id,),
            ).fetchone()
            return self._to_banner(row)

    def delete_banners_for_date(self, day: str) -> int:
        with self._lock:
            cursor = self.connection.execute("DELETE FROM banners WHERE date = ?", (day,))
            self.connection.commit()
            return cursor.rowcount

    def get_banner_image(self, banner_id: str) -> ImagePayload | None:
        with self._lock:
            row = self.connection.execute(
                "SELECT image_bytes, image_content_type FROM banners WHERE id = ?",
                (banner_id,),
            ).fetchone()
            if row is None or not row["image_bytes"]:
                return None
            return ImagePayload(
                data=bytes(row["image_bytes"]),
                content_type=row["image_content_type"],
            )

    def list_banner_summaries(self, since: str, limit: int = 7) -> list[BannerSummary]:
        with self._lock:
            cursor = self.connection.execute(
                f"""
                SELECT {BANNER_SUMMARY_COLUMNS}
                FROM banners
                WHERE date >= ?
                ORDER BY date DESC
                LIMIT ?
                """,
                (since, limit),
            )
            return [self._to_banner_summary(row) for row in cursor.fetchall()]

    def upsert_member(self, user_id: str, payload: MemberUpsertRequest) -> Member:
        with self._lock:
            now = now_utc_iso()
            self.connection.execute(
                """
                INSERT INTO members (
                    user_id,
                    name,
                    role,
                    department,
                    bio,
                    linkedin_profile,
                    twitter_profile,
                    skills_json,
                    experience_level,
                    created_at,
                    updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    name = excluded.name,
                    role = excluded.role,
                    department = excluded.department,
                    bio = excluded.bio,
                    linkedin_profile = excluded.linkedin_profile,
                    twitter_profile = excluded.twitter_profile,
                    skills_json = excluded.skills_json,
                    experience_level = excluded.experience_level,
                    updated_at = excluded.updated_at
                """,
                (
                    user_id,
                    payload.name,
                    payload.role,
                    payload.department,
                    payload.bio,
                    payload.linkedin_profile,
                    payload.twitter_profile,
                    json.dumps(payload.normalized_skills()),
                    payload.experience_level,
                    now,
                    now,
                ),
            )
            self.connection.commit()
            member = self.get_member(user_id)
            if member is None:
                raise KeyError(f"Unknown user_id: {user_id}")
            return member

    def get_member(self, user_id: str) -> Member | None:
        with self._lock:
            row = self.connection.execute(
                """
                SELECT
                    user_id,
                    name,
                    role,
                    department,
                    bio,
                    linkedin_profile,
                    twitter_profile,
                    skills_json,
                    experience_level,
                    created_at,
                    updated_at
                FROM members
                WHERE user_id = ?
                """,
                (user_id,),
            ).fetchone()
            if row is None:
                return None
            return Member(
                user_id=row["user_id"],
                name=row["name"],
                role=row["role"],
                department=row["department"],
                bio=row["bio"],
                linkedin_profile=row["linkedin_profile"],
                twitter_profile=row["twitter_profile"],
                skills=json.loads(row["skills_json"] or "[]"),
                experience_level=row["experience_level"],
                created_at=row["created_at"],
                updated_at=row["updated_at"],
            )

    def create_job(
        self,
        job_id: str,
        *,
        subject_user_id: str,
        kind: AnalysisKind,
        metadata: JobMetadata,
        source_user_id: str | None = None,
    ) -> AnalysisJob:
        with self._lock:
            now = now_utc_iso()
            try:
                self.connection.execute(
                    """
                    INSERT INTO analysis_jobs (
                        id,
                        subject_user_id,
                        source_user_id,
                        kind,
                        status,
                        metadata_json,
                        created_at,
                        updated_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        job_id,
                        subject_user_id,
                        source_user_id,
                        kind.value,
                        JobStatus.PENDING.value,
                        metadata.model_dump_json(),
                        now,
                        now,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                self.connection.rollback()
                raise JobConflictError(f"Analysis job {job_id} already exists") from exc
            self.connection.commit()
            return self._get_job_or_raise(job_id)

    def complete_job(
        self,
        job_id: str,
        *,
        result: AnalysisResult,
        metadata: JobMetadata,
    ) -> AnalysisJob:
        return self._finish_job(
            job_id,
            status=JobStatus.COMPLETED,
            result_json=result.model_dump_json(),
            metadata_json=metadata.model_dump_json(),
            error=None,
        )

    def fail_job(self, job_id: str, *, error: str) -> AnalysisJob:
        return self._finish_job(
            job_id,
            status=JobStatus.FAILED,
            result_json=None,
            metadata_json=None,
            error=error,
        )

    def _finish_job(
        self,
        job_id: str,
        *,
        status: JobStatus,
        result_json: str | None,
        metadata_json: str | None,
        error: str | None,
    ) -> AnalysisJob:
        if status not in TERMINAL_JOB_STATUSES:
            raise JobTransitionError(f"{status.value} is not a terminal job status")
        with self._lock:
            cursor = self.connection.execute(
                """
                UPDATE analysis_jobs
                SET
                    status = ?,
                    result_json = ?,
                    metadata_json = COALESCE(?, metadata_json),
                    error = ?,
                    updated_at = ?
                WHERE id = ? AND status = ?
                """,
                (
                    status.value,
                    result_json,
                    metadata_json,
                    error,
                    now_utc_iso(),
                    job_id,
                    JobStatus.PENDING.value,
                ),
            )
            self.connection.commit()
            if cursor.rowcount == 0:
                raise JobTransitionError(f"Analysis job {job_id} is not pending")
            return self._get_job_or_raise(job_id)

    def _get_job_or_raise(self, job_id: str) -> AnalysisJob:
        job = self.get_job(job_id)
        if job is None:
            raise KeyError(f"Unknown job_id: {job_id}")
        return job

    def get_job(self, job_id: str) -> AnalysisJob | None:
        with self._lock:
            row = self.connection.execute(
                f"SELECT {JOB_COLUMNS} FROM analysis_jobs WHERE id = ?",
                (job_id,),
            ).fetchone()
            if row is None:
                return None
            return AnalysisJob(
                id=row["id"],
                subject_user_id=row["subject_user_id"],
                source_user_id=row["source_user_id"],
                kind=AnalysisKind(row["kind"]),
                status=JobStatus(row["status"]),
                result=(
                    AnalysisResult.model_validate_json(row["result_json"])
                    if row["result_json"]
                    else None
                ),
                metadata=JobMetadata.model_validate_json(row["metadata_json"] or "{}"),
                error=row["error"],
                created_at=row["created_at"],
                updated_at=row["updated_at"],
            )

    def _to_banner_summary(self, row: sqlite3.Row) -> BannerSummary:
        return BannerSummary(
            id=row["id"],
            date=row["date"],
            title=row["title"],
            description=row["description"],
            topic_summary=row["topic_summary"],
            origin=BannerOrigin(
                source=row["origin_source"],
                generated_at=row["origin_generated_at"],
                category=row["origin_category"],
                engagement_score=int(row["engagement_score"]),
            ),
            created_at=row["created_at"],
        )

    def _to_banner(self, row: sqlite3.Row) -> Banner:
        summary = self._to_banner_summary(row)
        return Banner(
            **summary.model_dump(),
            body=row["body"],
            image_url=row["image_url"],
            image_content_type=row["image_content_type"],
            image_size=int(row["image_size"] or 0),
            status=row["status"],
            expires_at=row["expires_at"],
        )
