"""Zoom collectors: live-session attendance and recording views."""

from __future__ import annotations

import logging
from typing import Any

from scripts.course_analytics.base_collector import BaseCollector
from scripts.course_analytics.fetcher import BearerAuth, RawRecord, extract_records
from scripts.course_analytics.normalizer import (
    column,
    divided,
    minutes_between,
    parse_timestamp,
    to_date,
    to_int,
    to_str,
)

logger = logging.getLogger("collection.zoom")

_PAGING = {"page_param": "page_number", "size_param": "page_size"}


class _ZoomCollector(BaseCollector):
    SERVICE = "zoom"

    def _auth(self) -> BearerAuth:
        return BearerAuth(self._credential("api_key"))

    def _date_params(self) -> dict[str, Any]:
        start, end = self._window()
        return {"from": start.isoformat(), "to": end.isoformat()}


class ZoomSessionsCollector(_ZoomCollector):
    SOURCE_NAME = "zoom_sessions"
    DISPLAY_NAME = "Zoom Live Sessions"

    COLUMNS = (
        column("meeting_id", "meeting_id", convert=to_str),
        column("participant_id", "user_id", "id", "participant_uuid", convert=to_str),
        column("participant_name", "name", "user_name", "display_name",
               convert=to_str, default="Unknown Participant"),
        column("join_time", "join_time", "joined_at", convert=parse_timestamp),
        column("leave_time", "leave_time", "left_at", convert=parse_timestamp),
        column(
            "duration_minutes",
            divided("duration", 60),
            minutes_between("join_time", "leave_time"),
            convert=to_int,
        ),
        column("meeting_topic", "topic", "meeting_topic", "subject",
               convert=to_str, default="Unknown Topic"),
        column("meeting_date", "join_time", "joined_at", "start_time", convert=to_date),
    )
    REQUIRED = ("meeting_id", "participant_id", "join_time")

    def fetch_raw(self) -> list[RawRecord]:
        base_url = self._base_url()
        auth = self._auth()

        meetings = self._paginate(
            f"{base_url}/users/me/meetings",
            auth=auth,
            initial_params={"type": "live", **self._date_params()},
            records_key="meetings",
            **_PAGING,
        )
        if not meetings:
            logger.warning("No Zoom meetings found", extra={"source": self.SOURCE_NAME})
            return []

        participants: list[RawRecord] = []
        for meeting in meetings:
            meeting_id = meeting.get("id")
            if meeting_id is None:
                continue
            rows = self._paginate_item(
                f"{base_url}/report/meetings/{meeting_id}/participants",
                auth=auth,
                records_key="participants",
                **_PAGING,
            )
            for row in rows:
                # Participant reports carry no meeting context of their own
                participants.append({
                    **row,
                    "meeting_id": meeting_id,
                    "meeting_topic": meeting.get("topic"),
                    "start_time": meeting.get("start_time"),
                })
        return participants


class ZoomRecordingsCollector(_ZoomCollector):
    SOURCE_NAME = "zoom_recordings"
    DISPLAY_NAME = "Zoom Recordings"

    COLUMNS = (
        column("recording_id", "recording_id", "id", convert=to_str),
        column("meeting_id", "meeting_id", convert=to_str),
        column("viewer_id", "user_id", "viewer_id", "email", convert=to_str),
        column("viewer_name", "user_name", "name", "viewer_name",
               convert=to_str, default="Unknown Viewer"),
        column("view_start_time", "start_time", "view_start_time", convert=parse_timestamp),
        column(
            "view_duration_minutes",
            divided("duration", 60),
            "view_duration_minutes",
            convert=to_int,
        ),
        column("recording_topic", "meeting_topic", "topic", convert=to_str),
        column("recording_date", "meeting_start_time", "recording_start", convert=to_date),
    )
    REQUIRED = ("recording_id", "meeting_id", "viewer_id", "view_start_time")

    def fetch_raw(self) -> list[RawRecord]:
        base_url = self._base_url()
        auth = self._auth()

        meetings = self._paginate(
            f"{base_url}/users/me/recordings",
            auth=auth,
            initial_params=self._date_params(),
            records_key="meetings",
            **_PAGING,
        )
        if not meetings:
            logger.warning("No Zoom recordings found", extra={"source": self.SOURCE_NAME})
            return []

        views: list[RawRecord] = []
        for meeting in meetings:
            for recording in meeting.get("recording_files") or []:
                recording_id = recording.get("id")
                if recording_id is None:
                    continue
                payload = self._detail(
                    f"{base_url}/metrics/recordings/{recording_id}/views", auth=auth,
                )
                for view in extract_records(payload, "views"):
                    views.append({
                        **view,
                        "recording_id": recording_id,
                        "meeting_id": meeting.get("id"),
                        "meeting_topic": meeting.get("topic"),
                        "meeting_start_time": meeting.get("start_time"),
                        "recording_start": recording.get("recording_start"),
                    })
        return views
