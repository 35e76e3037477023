"""Ingestion core for the course graph.

- Low-level clients for the session-cookie and bearer-token APIs
- Orchestrator: token lifecycle, enumeration, content crawl, submissions, quizzes
- Content-tree codec and the sync pipeline built on top of them
"""

from ingestion.core.activity_tree import flatten_activity_tree, join_activity_names, unflatten_activity_tree
from ingestion.core.errors import (
    ClientAbortedError,
    IngestionError,
    MissingFieldError,
    NotFoundError,
    SchemaViolationError,
    TokenDecodeError,
    UnexpectedResponseError,
    UnresolvedReferenceError,
)
from ingestion.core.orchestrator import CourseGraphClient, TopicKind, classify_topic
from ingestion.core.session_client import SessionApiClient
from ingestion.core.siren import SirenEntity, SirenLink, parse_siren
from ingestion.core.sync import ModuleSnapshot, OverviewSnapshot, sync_module, sync_modules, sync_overview
from ingestion.core.token_client import TokenApiClient, decode_bearer_token
from ingestion.core.url_expiry import get_url_expiry, last_path_component

__all__ = [
    "flatten_activity_tree",
    "unflatten_activity_tree",
    "join_activity_names",
    "IngestionError",
    "UnexpectedResponseError",
    "SchemaViolationError",
    "MissingFieldError",
    "NotFoundError",
    "TokenDecodeError",
    "ClientAbortedError",
    "UnresolvedReferenceError",
    "CourseGraphClient",
    "TopicKind",
    "classify_topic",
    "SessionApiClient",
    "TokenApiClient",
    "decode_bearer_token",
    "SirenEntity",
    "SirenLink",
    "parse_siren",
    "OverviewSnapshot",
    "ModuleSnapshot",
    "sync_overview",
    "sync_module",
    "sync_modules",
    "get_url_expiry",
    "last_path_component"
]
