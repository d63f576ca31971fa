"""
Shared fixtures for federation service tests.
"""

import pytest

from shared.config import ServiceConfig

APP_GUID = "6f1c1b2e-app-guid"

REQUESTS_TEXT = """\
# HELP requests_total Total HTTP requests.
# TYPE requests_total counter
requests_total{path="/"} 3
requests_total{path="/api"} 5
"""

QUEUE_TEXT = """\
# HELP queue_depth Jobs waiting in the queue.
# TYPE queue_depth gauge
queue_depth 7
"""


@pytest.fixture
def config():
    """Configuration pointing at fictitious platform endpoints."""
    return ServiceConfig(
        service_name="federation",
        api="https://api.example.com",
        app_guid=APP_GUID,
        app_route="web-app.example.com",
        cf_user="admin",
        cf_pass="secret",
        org_name="acme",
        space_name="production",
        collection_interval_seconds=3600,
        fetch_timeout_seconds=1.0,
        resolve_timeout_seconds=1.0,
        cycle_timeout_seconds=5.0,
        max_concurrent_fetches=4,
        resolve_retry_attempts=2,
        resolve_retry_base_delay=0,
    )
