"""Explicit table provisioning for the setup-db command.

Storage never creates tables on its own; a missing table is reported as a
failed target until this has been run.
"""

from __future__ import annotations

import logging

from scripts.course_analytics.db import Database

logger = logging.getLogger("collection.schema")

TABLES: dict[str, str] = {
    "pre_course_survey": """
        CREATE TABLE IF NOT EXISTS pre_course_survey (
            id SERIAL PRIMARY KEY,
            participant_id VARCHAR(255) NOT NULL,
            submission_date TIMESTAMPTZ,
            response_data JSONB,
            collected_at TIMESTAMPTZ NOT NULL,
            created_at TIMESTAMPTZ DEFAULT NOW()
        )""",
    "post_course_survey": """
        CREATE TABLE IF NOT EXISTS post_course_survey (
            id SERIAL PRIMARY KEY,
            participant_id VARCHAR(255) NOT NULL,
            submission_date TIMESTAMPTZ,
            response_data JSONB,
            collected_at TIMESTAMPTZ NOT NULL,
            created_at TIMESTAMPTZ DEFAULT NOW()
        )""",
    "posit_cloud_usage": """
        CREATE TABLE IF NOT EXISTS posit_cloud_usage (
            id SERIAL PRIMARY KEY,
            user_id VARCHAR(255) NOT NULL,
            session_id VARCHAR(255) NOT NULL,
            start_time TIMESTAMPTZ,
            end_time TIMESTAMPTZ,
            duration_minutes INTEGER,
            project_name VARCHAR(255),
            cpu_usage NUMERIC,
            memory_usage NUMERIC,
            collected_at TIMESTAMPTZ NOT NULL,
            created_at TIMESTAMPTZ DEFAULT NOW()
        )""",
    "zoom_live_sessions": """
        CREATE TABLE IF NOT EXISTS zoom_live_sessions (
            id SERIAL PRIMARY KEY,
            meeting_id VARCHAR(255) NOT NULL,
            participant_id VARCHAR(255) NOT NULL,
            participant_name VARCHAR(255),
            join_time TIMESTAMPTZ,
            leave_time TIMESTAMPTZ,
            duration_minutes INTEGER,
            meeting_topic VARCHAR(255),
            meeting_date DATE,
            collected_at TIMESTAMPTZ NOT NULL,
            created_at TIMESTAMPTZ DEFAULT NOW()
        )""",
    "zoom_recordings": """
        CREATE TABLE IF NOT EXISTS zoom_recordings (
            id SERIAL PRIMARY KEY,
            recording_id VARCHAR(255) NOT NULL,
            meeting_id VARCHAR(255) NOT NULL,
            viewer_id VARCHAR(255) NOT NULL,
            viewer_name VARCHAR(255),
            view_start_time TIMESTAMPTZ,
            view_duration_minutes INTEGER,
            recording_topic VARCHAR(255),
            recording_date DATE,
            collected_at TIMESTAMPTZ NOT NULL,
            created_at TIMESTAMPTZ DEFAULT NOW()
        )""",
    "github_commits": """
        CREATE TABLE IF NOT EXISTS github_commits (
            id SERIAL PRIMARY KEY,
            commit_sha VARCHAR(255) NOT NULL,
            repository_name VARCHAR(255) NOT NULL,
            author_username VARCHAR(255),
            author_email VARCHAR(255),
            commit_message TEXT,
            commit_date TIMESTAMPTZ,
            additions INTEGER,
            deletions INTEGER,
            changed_files INTEGER,
            collected_at TIMESTAMPTZ NOT NULL,
            created_at TIMESTAMPTZ DEFAULT NOW()
        )""",
    "collection_runs": """
        CREATE TABLE IF NOT EXISTS collection_runs (
            id BIGSERIAL PRIMARY KEY,
            run_id UUID NOT NULL,
            phase VARCHAR(16) NOT NULL,
            name VARCHAR(255) NOT NULL,
            target VARCHAR(255),
            status VARCHAR(16) NOT NULL,
            record_count INTEGER NOT NULL DEFAULT 0,
            duration_seconds DOUBLE PRECISION NOT NULL DEFAULT 0,
            error_message TEXT,
            recorded_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )""",
}

INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_pre_course_survey_participant ON pre_course_survey (participant_id)",
    "CREATE INDEX IF NOT EXISTS idx_post_course_survey_participant ON post_course_survey (participant_id)",
    "CREATE INDEX IF NOT EXISTS idx_posit_cloud_usage_session ON posit_cloud_usage (session_id)",
    "CREATE INDEX IF NOT EXISTS idx_zoom_live_sessions_key ON zoom_live_sessions (meeting_id, participant_id)",
    "CREATE INDEX IF NOT EXISTS idx_zoom_recordings_key ON zoom_recordings (recording_id, viewer_id)",
    "CREATE INDEX IF NOT EXISTS idx_github_commits_sha ON github_commits (commit_sha)",
    "CREATE INDEX IF NOT EXISTS idx_collection_runs_recorded ON collection_runs (recorded_at DESC)",
)


def setup_schema(db: Database) -> list[str]:
    """Create every table and index that does not exist yet."""
    with db.transaction() as cur:
        for table, ddl in TABLES.items():
            cur.execute(ddl)
            logger.info("Ensured table %s", table, extra={"target": table})
        for ddl in INDEXES:
            cur.execute(ddl)
    return list(TABLES)
