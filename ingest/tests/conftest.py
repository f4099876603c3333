import json
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
import requests

from glowmarkt_ingest.config import GlowmarktSettings


def make_response(status=200, payload=None, text=None, reason="OK"):
    """A real requests.Response with the given status and body."""
    resp = requests.Response()
    resp.status_code = status
    resp.reason = reason
    if payload is not None:
        resp._content = json.dumps(payload).encode("utf-8")
        resp.headers["Content-Type"] = "application/json"
    else:
        resp._content = (text or "").encode("utf-8")
        resp.headers["Content-Type"] = "text/plain"
    resp.encoding = "utf-8"
    return resp


@pytest.fixture
def settings():
    return GlowmarktSettings(base_url="https://glow.test/api/v0-1", application_id="app-id")


@pytest.fixture
def session():
    s = MagicMock(spec=requests.Session)
    s.headers = {}
    return s


@pytest.fixture
def utc():
    def _utc(*args):
        return datetime(*args, tzinfo=timezone.utc)
    return _utc


def reading_payload(resource_id="res-1", classifier="electricity.consumption", data=None):
    return {
        "status": "OK",
        "name": "electricity consumption",
        "resourceTypeId": "type-1",
        "resourceId": resource_id,
        "query": {"from": "2024-12-01T00:00:00", "to": "2024-12-02T00:00:00",
                  "period": "PT30M", "function": "sum"},
        "data": data if data is not None else [[1700000000, 3.5], [1700001800, 4.0]],
        "units": "kWh",
        "classifier": classifier,
    }


def entity_payload(ve_id="ve-1", resource_ids=("res-1",)):
    return {
        "veId": ve_id,
        "name": "Home",
        "applicationId": "app-id",
        "active": True,
        "resources": [
            {"resourceId": rid, "name": f"resource {rid}", "resourceTypeId": "type-1"}
            for rid in resource_ids
        ],
    }
