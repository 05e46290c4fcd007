"""Secret resolution and the environment-backed credential provider.

Any credential value may be a literal or a reference to a cloud secret
manager, so the same variable names work on a laptop (.env file) and in CI
or cloud jobs where values live in AWS Secrets Manager or GCP Secret Manager.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Optional, Protocol

from scripts.course_analytics.errors import ConfigurationError

logger = logging.getLogger("collection.secrets")

# Prefixes that indicate a cloud secret reference
_AWS_PREFIX = "aws-secret://"
_GCP_PREFIX = "gcp-secret://"


class CredentialProvider(Protocol):
    def get(self, service: str, key: str) -> Optional[str]:
        """Return the credential value, or None when it is not configured."""


def resolve_secret(value: str) -> str:
    """Resolve a secret reference to its plaintext value.

    Supported formats:
      - "aws-secret://secret-name"         -> AWS Secrets Manager
      - "aws-secret://secret-name#key"     -> AWS Secrets Manager (JSON key)
      - "gcp-secret://project/secret/ver"  -> GCP Secret Manager
      - anything else                      -> returned as-is (env var / literal)
    """
    if value.startswith(_AWS_PREFIX):
        return _resolve_aws_secret(value[len(_AWS_PREFIX):])
    if value.startswith(_GCP_PREFIX):
        return _resolve_gcp_secret(value[len(_GCP_PREFIX):])
    return value


def _resolve_aws_secret(ref: str) -> str:
    """ref format: "secret-name" or "secret-name#json_key"."""
    import boto3

    secret_name, _, json_key = ref.partition("#")

    region = os.environ.get("AWS_REGION", "us-east-1")
    client = boto3.client("secretsmanager", region_name=region)

    resp = client.get_secret_value(SecretId=secret_name)
    secret_string = resp["SecretString"]

    if json_key:
        data = json.loads(secret_string)
        return str(data[json_key])
    return secret_string


def _resolve_gcp_secret(ref: str) -> str:
    """ref format: "projects/PROJECT/secrets/NAME/versions/VERSION" or "NAME"."""
    from google.cloud import secretmanager

    client = secretmanager.SecretManagerServiceClient()

    if ref.startswith("projects/"):
        name = ref
    else:
        project = os.environ.get("GCP_PROJECT_ID", "")
        if not project:
            project = _gcp_project_from_metadata()
        name = f"projects/{project}/secrets/{ref}/versions/latest"

    response = client.access_secret_version(request={"name": name})
    return response.payload.data.decode("UTF-8")


def _gcp_project_from_metadata() -> str:
    """Fetch GCP project ID from the metadata server (Cloud Run / GCE only)."""
    import requests

    try:
        resp = requests.get(
            "http://metadata.google.internal/computeMetadata/v1/project/project-id",
            headers={"Metadata-Flavor": "Google"},
            timeout=2,
        )
        resp.raise_for_status()
        return resp.text
    except requests.RequestException as exc:
        raise ConfigurationError(
            "Cannot determine GCP project ID. Set GCP_PROJECT_ID env var."
        ) from exc


def resolve_database_url() -> str:
    """Resolve DATABASE_URL from env, with cloud secret support."""
    url = os.environ.get("DATABASE_URL", "")
    if url:
        return resolve_secret(url)

    host = os.environ.get("PG_HOST", "localhost")
    port = os.environ.get("PG_PORT", "5432")
    user = os.environ.get("PG_USER", "postgres")
    password = resolve_secret(os.environ.get("PG_PASSWORD", "postgres"))
    database = os.environ.get("PG_DATABASE", "course_analytics")

    return f"postgresql://{user}:{password}@{host}:{port}/{database}"


class EnvCredentialProvider:
    """Read credentials from ``{SERVICE}_{KEY}`` environment variables.

    ``get("zoom", "api_key")`` reads ``ZOOM_API_KEY``. Resolved values are
    cached for the lifetime of the provider so a secret manager is hit at
    most once per credential and run.
    """

    def __init__(self, environ: Optional[dict[str, str]] = None) -> None:
        self._environ = environ if environ is not None else os.environ
        self._cache: dict[tuple[str, str], Optional[str]] = {}

    @staticmethod
    def variable_name(service: str, key: str) -> str:
        return f"{service}_{key}".upper()

    def get(self, service: str, key: str) -> Optional[str]:
        cache_key = (service, key)
        if cache_key not in self._cache:
            raw = self._environ.get(self.variable_name(service, key), "").strip()
            if not raw:
                logger.debug("Credential %s not set", self.variable_name(service, key))
                self._cache[cache_key] = None
            else:
                self._cache[cache_key] = resolve_secret(raw)
        return self._cache[cache_key]
