"""Posit Cloud workspace usage collector: one row per session."""

from __future__ import annotations

import logging

from scripts.course_analytics.base_collector import BaseCollector
from scripts.course_analytics.fetcher import BearerAuth, RawRecord
from scripts.course_analytics.normalizer import (
    column,
    divided,
    minutes_between,
    parse_timestamp,
    to_float,
    to_int,
    to_str,
)

logger = logging.getLogger("collection.posit_cloud")


class PositCloudCollector(BaseCollector):
    SOURCE_NAME = "posit_cloud"
    DISPLAY_NAME = "Posit Cloud Usage"
    SERVICE = "posit_cloud"

    COLUMNS = (
        column("user_id", "user_id", "owner_id", "username", convert=to_str),
        column("session_id", "session_id", "id", convert=to_str),
        column("start_time", "start_time", "started_at", "created_at", convert=parse_timestamp),
        column("end_time", "end_time", "ended_at", "stopped_at", convert=parse_timestamp),
        column(
            "duration_minutes",
            divided("duration_seconds", 60),
            "duration_minutes",
            minutes_between("start_time", "end_time"),
            minutes_between("started_at", "ended_at"),
            convert=to_int,
        ),
        column("project_name", "project_name", "project_title", "name",
               convert=to_str, default="Unknown Project"),
        column("cpu_usage", "cpu_usage_percent", "cpu_usage", "avg_cpu_usage", convert=to_float),
        column("memory_usage", "memory_usage_percent", "memory_usage", "avg_memory_usage",
               convert=to_float),
    )
    REQUIRED = ("user_id", "session_id", "start_time")

    def fetch_raw(self) -> list[RawRecord]:
        base_url = self._base_url()
        workspace_id = self._credential("workspace_id")
        start, end = self._window()

        sessions = self._paginate(
            f"{base_url}/workspaces/{workspace_id}/usage",
            auth=BearerAuth(self._credential("api_key")),
            initial_params={
                "start_date": start.isoformat(),
                "end_date": end.isoformat(),
                "include_sessions": "true",
                "include_projects": "true",
            },
            page_param="page",
            size_param="per_page",
            records_key="sessions",
        )
        if not sessions:
            logger.warning("No Posit Cloud usage data found", extra={"source": self.SOURCE_NAME})
        return sessions
