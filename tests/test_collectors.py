# tests/test_collectors.py
from datetime import date, datetime, timezone

import pytest
from requests.auth import HTTPBasicAuth

from scripts.course_analytics.collectors import (
    GitHubCommitsCollector,
    PositCloudCollector,
    PreSurveyCollector,
    ZoomRecordingsCollector,
    ZoomSessionsCollector,
)
from scripts.course_analytics.config import FetchConfig
from scripts.course_analytics.errors import AuthError, FetchError, MissingCredentialError
from scripts.course_analytics.fetcher import BearerAuth
from tests.fakes import DictCredentials, FakeResponse

TODAY = date(2024, 3, 31)


def _collector(cls, make_fetcher, handler, credentials, **config):
    fetcher, session = make_fetcher(handler, max_attempts=2)
    collector = cls(
        DictCredentials(credentials),
        fetcher,
        FetchConfig(**config),
        lookback_days=30,
        today=lambda: TODAY,
    )
    return collector, session


# --- GitHub ---
GITHUB_CREDS = {
    ("github", "base_url"): "https://api.github.test/",
    ("github", "organization"): "acme",
    ("github", "token"): "ghp_secret",
}


def _github_handler(url, params):
    if url == "https://api.github.test/orgs/acme/repos":
        return [{"name": "course-site"}, {"description": "nameless"}]
    if url == "https://api.github.test/repos/acme/course-site/commits":
        return [
            {
                "sha": "abc123",
                "author": {"login": "dev1"},
                "commit": {
                    "author": {"email": "dev1@acme.test", "date": "2024-03-10T08:00:00Z"},
                    "message": "Add week 3 notes",
                },
            },
            {
                "sha": "def456",
                "author": None,
                "committer": {"login": "web-flow"},
                "commit": {"committer": {"date": "2024-03-11T08:00:00Z"}},
            },
        ]
    if url.endswith("/commits/abc123"):
        return {"stats": {"additions": 12, "deletions": 3, "total": 15}, "files": [{}, {}]}
    if url.endswith("/commits/def456"):
        return FakeResponse(500)
    raise AssertionError(f"unexpected url {url}")


def test_github_commits_normalized(make_fetcher):
    collector, session = _collector(GitHubCommitsCollector, make_fetcher, _github_handler, GITHUB_CREDS)

    record_set = collector()

    assert record_set.name == "github_commits"
    assert record_set.columns[-1] == "collected_at"
    first, second = record_set.records
    assert first["commit_sha"] == "abc123"
    assert first["repository_name"] == "course-site"
    assert first["author_username"] == "dev1"
    assert first["author_email"] == "dev1@acme.test"
    assert first["commit_date"] == datetime(2024, 3, 10, 8, tzinfo=timezone.utc)
    assert (first["additions"], first["deletions"], first["changed_files"]) == (12, 3, 2)

    # detail request failed: defaults fill the gaps
    assert second["author_username"] == "web-flow"
    assert second["commit_message"] == "No message"
    assert (second["additions"], second["deletions"], second["changed_files"]) == (0, 0, 0)


def test_github_request_shape(make_fetcher):
    collector, session = _collector(GitHubCommitsCollector, make_fetcher, _github_handler, GITHUB_CREDS)

    collector()

    commits_call = next(c for c in session.calls if c["url"].endswith("/course-site/commits"))
    assert commits_call["params"]["since"] == "2024-03-01T00:00:00Z"
    assert commits_call["headers"]["Accept"] == "application/vnd.github+json"
    assert isinstance(commits_call["auth"], BearerAuth)
    assert commits_call["auth"].token == "ghp_secret"


def test_github_bad_token_fails_collector(make_fetcher):
    collector, session = _collector(
        GitHubCommitsCollector, make_fetcher,
        lambda url, params: FakeResponse(401, text="Bad credentials"), GITHUB_CREDS,
    )

    with pytest.raises(AuthError):
        collector()
    assert len(session.calls) == 1


def test_missing_credential_raises_before_any_request(make_fetcher):
    collector, session = _collector(GitHubCommitsCollector, make_fetcher, _github_handler, {})

    with pytest.raises(MissingCredentialError) as exc_info:
        collector()

    assert exc_info.value.service == "github"
    assert session.calls == []


# --- Surveys ---
SURVEY_CREDS = {
    ("enketo", "base_url"): "https://kobo.test/api/v2",
    ("enketo", "username"): "instructor",
    ("enketo", "password"): "pw",
    ("enketo", "pre_survey_form_id"): "aPreForm",
}


def test_survey_offset_paging_and_response_data(make_fetcher):
    submissions = [
        {"_uuid": "p1", "_submission_time": "2024-03-02T09:00:00", "_id": 1, "q_experience": "none"},
        {"_uuid": "p2", "_submission_time": "2024-03-02T10:00:00", "_id": 2, "q_experience": "some"},
        {"_id": 3, "q_experience": "lots"},
    ]

    def handler(url, params):
        assert url == "https://kobo.test/api/v2/data/aPreForm"
        start, limit = params["start"], params["limit"]
        return {"count": 3, "results": submissions[start:start + limit]}

    collector, session = _collector(PreSurveyCollector, make_fetcher, handler, SURVEY_CREDS, page_size=2)

    record_set = collector()

    assert [c["params"]["start"] for c in session.calls] == [0, 2]
    assert isinstance(session.calls[0]["auth"], HTTPBasicAuth)
    # the submission without a participant id is dropped
    assert [r["participant_id"] for r in record_set] == ["p1", "p2"]
    assert record_set.records[0]["response_data"] == {"q_experience": "none"}
    assert record_set.records[0]["submission_date"] == datetime(2024, 3, 2, 9, tzinfo=timezone.utc)


# --- Posit Cloud ---
def test_posit_cloud_duration_fallbacks(make_fetcher):
    sessions = [
        {"user_id": 7, "session_id": "s1", "start_time": "2024-03-05T10:00:00Z",
         "duration_seconds": 1800, "project_name": "Week 1"},
        {"owner_id": "u8", "id": "s2", "started_at": "2024-03-05T11:00:00Z",
         "ended_at": "2024-03-05T11:20:00Z", "cpu_usage": "12.5"},
        {"user_id": "u9", "start_time": "2024-03-05T12:00:00Z"},
    ]
    creds = {
        ("posit_cloud", "base_url"): "https://posit.test/v1",
        ("posit_cloud", "workspace_id"): "ws1",
        ("posit_cloud", "api_key"): "key",
    }
    collector, session = _collector(
        PositCloudCollector, make_fetcher, lambda url, params: {"sessions": sessions}, creds,
    )

    record_set = collector()

    assert session.calls[0]["url"] == "https://posit.test/v1/workspaces/ws1/usage"
    assert session.calls[0]["params"]["start_date"] == "2024-03-01"
    first, second = record_set.records
    assert (first["user_id"], first["duration_minutes"], first["project_name"]) == ("7", 30, "Week 1")
    assert (second["user_id"], second["session_id"], second["duration_minutes"]) == ("u8", "s2", 20)
    assert second["project_name"] == "Unknown Project"
    assert second["cpu_usage"] == 12.5


# --- Zoom ---
ZOOM_CREDS = {("zoom", "base_url"): "https://zoom.test/v2", ("zoom", "api_key"): "zk"}


def test_zoom_sessions_enriched_with_meeting(make_fetcher):
    def handler(url, params):
        if url.endswith("/users/me/meetings"):
            return {"meetings": [{"id": 99, "topic": "Week 2 live", "start_time": "2024-03-12T17:00:00Z"}]}
        if url.endswith("/report/meetings/99/participants"):
            return {"participants": [
                {"id": "pA", "name": "Ana", "join_time": "2024-03-12T17:01:00Z",
                 "leave_time": "2024-03-12T17:50:00Z", "duration": 2940},
                {"name": "No Id"},
            ]}
        raise AssertionError(url)

    collector, session = _collector(ZoomSessionsCollector, make_fetcher, handler, ZOOM_CREDS)

    record_set = collector()

    assert session.calls[0]["params"]["from"] == "2024-03-01"
    assert session.calls[0]["params"]["page_number"] == 1
    (row,) = record_set.records
    assert row["meeting_id"] == "99"
    assert row["participant_id"] == "pA"
    assert row["duration_minutes"] == 49
    assert row["meeting_topic"] == "Week 2 live"
    assert row["meeting_date"] == date(2024, 3, 12)


def test_zoom_recordings_skip_failed_view_metrics(make_fetcher):
    def handler(url, params):
        if url.endswith("/users/me/recordings"):
            return {"meetings": [{
                "id": 5, "topic": "Week 1", "start_time": "2024-03-04T17:00:00Z",
                "recording_files": [{"id": "r1"}, {"id": "r2"}],
            }]}
        if url.endswith("/recordings/r1/views"):
            return {"views": [{"user_id": "v1", "start_time": "2024-03-06T20:00:00Z", "duration": 600}]}
        if url.endswith("/recordings/r2/views"):
            return FakeResponse(503)
        raise AssertionError(url)

    collector, _ = _collector(ZoomRecordingsCollector, make_fetcher, handler, ZOOM_CREDS)

    record_set = collector()

    (row,) = record_set.records
    assert (row["recording_id"], row["meeting_id"], row["viewer_id"]) == ("r1", "5", "v1")
    assert row["view_duration_minutes"] == 10
    assert row["recording_date"] == date(2024, 3, 4)


# --- partial fetches ---
POSIT_CREDS = {
    ("posit_cloud", "base_url"): "https://posit.test/v1",
    ("posit_cloud", "workspace_id"): "ws1",
    ("posit_cloud", "api_key"): "key",
}


def _session_row(n):
    return {"user_id": f"u{n}", "session_id": f"s{n}", "start_time": "2024-03-05T10:00:00Z"}


def test_later_page_failure_keeps_earlier_pages(make_fetcher):
    def handler(url, params):
        if params["page"] == 1:
            return {"sessions": [_session_row(1), _session_row(2)]}
        return FakeResponse(503)

    collector, session = _collector(PositCloudCollector, make_fetcher, handler, POSIT_CREDS, page_size=2)

    record_set = collector()

    assert [r["session_id"] for r in record_set] == ["s1", "s2"]
    assert len(session.calls) == 3


def test_first_page_failure_fails_collector(make_fetcher):
    collector, _ = _collector(
        PositCloudCollector, make_fetcher, lambda url, params: FakeResponse(503), POSIT_CREDS,
    )

    with pytest.raises(FetchError) as exc_info:
        collector()

    assert exc_info.value.attempts == 2
    assert exc_info.value.pages == []


# --- one failing child listing ---
def _github_with_empty_repo(url, params):
    if url.endswith("/orgs/acme/repos"):
        return [{"name": "good"}, {"name": "empty"}]
    if url.endswith("/repos/acme/good/commits"):
        return [{"sha": "g1", "author": {"login": "dev1"}}]
    if url.endswith("/repos/acme/empty/commits"):
        return FakeResponse(409, text="Git Repository is empty.")
    if url.endswith("/commits/g1"):
        return {"stats": {"additions": 1, "deletions": 0, "total": 1}}
    raise AssertionError(f"unexpected url {url}")


def test_github_empty_repo_skipped(make_fetcher):
    collector, _ = _collector(GitHubCommitsCollector, make_fetcher, _github_with_empty_repo, GITHUB_CREDS)

    record_set = collector()

    assert [(r["repository_name"], r["commit_sha"]) for r in record_set] == [("good", "g1")]


def test_github_auth_failure_on_repo_still_fails_collector(make_fetcher):
    def handler(url, params):
        if url.endswith("/repos/acme/empty/commits"):
            return FakeResponse(401, text="Bad credentials")
        return _github_with_empty_repo(url, params)

    collector, _ = _collector(GitHubCommitsCollector, make_fetcher, handler, GITHUB_CREDS)

    with pytest.raises(AuthError):
        collector()


def test_github_commit_without_login_kept_with_placeholder(make_fetcher):
    def handler(url, params):
        if url.endswith("/orgs/acme/repos"):
            return [{"name": "good"}]
        if url.endswith("/repos/acme/good/commits"):
            return [{"sha": "anon1", "author": None, "committer": None}]
        return {}

    collector, _ = _collector(GitHubCommitsCollector, make_fetcher, handler, GITHUB_CREDS)

    (row,) = collector().records

    assert row["author_username"] == "Unknown Author"
    assert "author_username" not in GitHubCommitsCollector.REQUIRED


def test_zoom_meeting_without_report_skipped(make_fetcher):
    def handler(url, params):
        if url.endswith("/users/me/meetings"):
            return {"meetings": [
                {"id": 1, "topic": "Week 1", "start_time": "2024-03-05T17:00:00Z"},
                {"id": 2, "topic": "Week 2", "start_time": "2024-03-12T17:00:00Z"},
            ]}
        if url.endswith("/report/meetings/1/participants"):
            return FakeResponse(404, text="Meeting does not exist")
        if url.endswith("/report/meetings/2/participants"):
            return {"participants": [{"id": "pB", "join_time": "2024-03-12T17:02:00Z"}]}
        raise AssertionError(url)

    collector, _ = _collector(ZoomSessionsCollector, make_fetcher, handler, ZOOM_CREDS)

    record_set = collector()

    assert [(r["meeting_id"], r["participant_id"]) for r in record_set] == [("2", "pB")]
