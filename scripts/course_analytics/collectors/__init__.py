"""Source collectors, in default run order."""

from __future__ import annotations

from scripts.course_analytics.collectors.github_commits import GitHubCommitsCollector
from scripts.course_analytics.collectors.posit_cloud import PositCloudCollector
from scripts.course_analytics.collectors.surveys import PostSurveyCollector, PreSurveyCollector
from scripts.course_analytics.collectors.zoom import ZoomRecordingsCollector, ZoomSessionsCollector

COLLECTOR_CLASSES = (
    PreSurveyCollector,
    PostSurveyCollector,
    PositCloudCollector,
    ZoomSessionsCollector,
    ZoomRecordingsCollector,
    GitHubCommitsCollector,
)
