"""Kobo Toolbox / Enketo survey collectors: pre- and post-course submissions."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from requests.auth import HTTPBasicAuth

from scripts.course_analytics.base_collector import BaseCollector
from scripts.course_analytics.fetcher import RawRecord
from scripts.course_analytics.normalizer import column, parse_timestamp, to_str

logger = logging.getLogger("collection.surveys")

# Bookkeeping fields Kobo adds to every submission
SYSTEM_FIELDS = frozenset({
    "participant_id", "_uuid", "uuid",
    "_submission_time", "submission_time", "submitted_at",
    "_id", "_xform_id_string", "_bamboo_dataset_id", "_attachments",
    "_status", "_geolocation", "_tags", "_notes", "_validation_status",
    "_submitted_by", "formhub/uuid", "meta/instanceID", "__version__",
})


def response_fields(raw: Mapping[str, Any]) -> dict[str, Any]:
    """The participant's answers with submission bookkeeping stripped."""
    return {k: v for k, v in raw.items() if k not in SYSTEM_FIELDS}


class SurveyCollector(BaseCollector):
    SERVICE = "enketo"
    FORM_KEY = ""

    COLUMNS = (
        column("participant_id", "participant_id", "_uuid", "uuid", convert=to_str),
        column("submission_date", "_submission_time", "submission_time", "submitted_at",
               convert=parse_timestamp),
        column("response_data", response_fields),
    )
    REQUIRED = ("participant_id", "submission_date", "response_data")

    def fetch_raw(self) -> list[RawRecord]:
        base_url = self._base_url()
        form_id = self._credential(self.FORM_KEY)
        auth = HTTPBasicAuth(self._credential("username"), self._credential("password"))

        submissions = self._paginate(
            f"{base_url}/data/{form_id}",
            auth=auth,
            initial_params={"format": "json", "sort": '{"_submission_time": -1}'},
            page_param="start",
            size_param="limit",
            page_origin=0,
            paging="offset",
            records_key="results",
        )
        if not submissions:
            logger.warning("No %s submissions found", self.DISPLAY_NAME,
                           extra={"source": self.SOURCE_NAME})
        return submissions


class PreSurveyCollector(SurveyCollector):
    SOURCE_NAME = "pre_survey"
    DISPLAY_NAME = "Pre-Course Survey"
    FORM_KEY = "pre_survey_form_id"


class PostSurveyCollector(SurveyCollector):
    SOURCE_NAME = "post_survey"
    DISPLAY_NAME = "Post-Course Survey"
    FORM_KEY = "post_survey_form_id"
