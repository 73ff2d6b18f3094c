"""
Consent, audit trail and privacy policy endpoints against a mocked MongoDB.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from pymongo.errors import PyMongoError

from app.consent_service.service import (
    AUDIT_COLLECTION,
    CONSENT_COLLECTION,
    POLICY_COLLECTION,
    PrivacyService,
)
from app.main import create_app

CONSENT_URL = "/api/v1/ai/consent"
USER_ID = "22222222-2222-2222-2222-222222222222"
NOW = datetime(2024, 6, 1, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def collections():
    cols = {name: MagicMock(name=name) for name in (CONSENT_COLLECTION, AUDIT_COLLECTION, POLICY_COLLECTION)}
    cols[CONSENT_COLLECTION].find_one.return_value = None
    cols[POLICY_COLLECTION].find_one.return_value = None
    return cols


@pytest.fixture
def client(collections, chat_client, ai_service, summary_cache):
    privacy = PrivacyService(lambda name: collections[name], clock=lambda: NOW)
    app = create_app(
        privacy_service=privacy,
        chat_client=chat_client,
        ai_service=ai_service,
        summary_cache=summary_cache,
        database_check=lambda: None,
    )
    with TestClient(app) as test_client:
        yield test_client


def _audit_docs(collections):
    return [c.args[0] for c in collections[AUDIT_COLLECTION].insert_one.call_args_list]


def test_consent_requires_identity(client):
    response = client.get(CONSENT_URL)

    assert response.status_code == 401
    assert response.json()["message"] == "Authentication required"


def test_user_id_header_is_ignored_by_default(client):
    response = client.get(CONSENT_URL, headers={"X-User-ID": USER_ID})

    assert response.status_code == 401


def test_get_consent_returns_defaults_and_audits_access(client, auth_headers, collections):
    response = client.get(
        CONSENT_URL,
        headers={**auth_headers, "X-Forwarded-For": "198.51.100.7"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["user_id"] == USER_ID
    assert body["ai_processing_consent"] is False
    assert body["consent_version"] == "1.0"

    audit = _audit_docs(collections)[-1]
    assert audit["action"] == "DATA_ACCESSED"
    assert audit["details"]["access_type"] == "consent_retrieval"
    assert audit["ip_address"] == "198.51.100.7"


def test_put_consent_updates_subset(client, auth_headers, collections):
    response = client.put(
        CONSENT_URL,
        json={"ai_processing_consent": True},
        headers=auth_headers,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["ai_processing_consent"] is True
    assert body["marketing_consent"] is False
    assert body["consent_given_at"] is not None
    collections[CONSENT_COLLECTION].update_one.assert_called_once()


def test_put_without_fields_is_400(client, auth_headers):
    response = client.put(CONSENT_URL, json={}, headers=auth_headers)

    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_REQUEST"


def test_put_with_unknown_field_is_400(client, auth_headers):
    response = client.put(CONSENT_URL, json={"telemetry_consent": True}, headers=auth_headers)

    assert response.status_code == 400


def test_put_store_failure_is_500(client, auth_headers, collections):
    collections[CONSENT_COLLECTION].update_one.side_effect = PyMongoError("down")

    response = client.put(CONSENT_URL, json={"analytics_consent": True}, headers=auth_headers)

    assert response.status_code == 500
    assert response.json()["code"] == "INTERNAL_ERROR"


def test_delete_revokes_all_consent(client, auth_headers, collections):
    response = client.delete(CONSENT_URL, headers=auth_headers)

    assert response.status_code == 200
    body = response.json()
    assert body["user_id"] == USER_ID
    assert body["gdpr_compliant"] is True
    assert "CONSENT_WITHDRAWN" in [doc["action"] for doc in _audit_docs(collections)]


def test_audit_trail_is_paginated(client, auth_headers, collections):
    audit = collections[AUDIT_COLLECTION]
    audit.count_documents.return_value = 3
    cursor = audit.find.return_value.sort.return_value.skip.return_value.limit.return_value
    cursor.__iter__.return_value = iter(
        [
            {
                "id": f"log-{i}",
                "user_id": USER_ID,
                "action": "CONSENT_UPDATED",
                "resource_type": "user_consent",
                "created_at": NOW - timedelta(minutes=i),
                "expires_at": NOW + timedelta(days=365),
            }
            for i in range(2)
        ]
    )

    response = client.get(f"{CONSENT_URL}/audit?limit=2&offset=0", headers=auth_headers)

    assert response.status_code == 200
    body = response.json()
    assert [log["id"] for log in body["audit_logs"]] == ["log-0", "log-1"]
    assert body["pagination"] == {
        "total_count": 3,
        "limit": 2,
        "offset": 0,
        "returned": 2,
        "has_next": True,
        "has_prev": False,
    }
    assert _audit_docs(collections)[-1]["resource_type"] == "audit_logs"


@pytest.mark.parametrize("query", ["limit=abc", "limit=0", "limit=500", "offset=-1"])
def test_invalid_paging_falls_back_to_defaults(client, auth_headers, collections, query):
    collections[AUDIT_COLLECTION].count_documents.return_value = 0

    response = client.get(f"{CONSENT_URL}/audit?{query}", headers=auth_headers)

    assert response.status_code == 200
    assert response.json()["pagination"]["limit"] == 50
    assert response.json()["pagination"]["offset"] == 0


def test_policy_missing_is_404(client):
    response = client.get(f"{CONSENT_URL}/policy")

    assert response.status_code == 404
    assert response.json()["code"] == "NOT_FOUND"


def test_policy_is_public(client, collections):
    collections[POLICY_COLLECTION].find_one.return_value = {
        "_id": "p1",
        "version": "2.0",
        "content": "We keep your data safe.",
        "effective_date": NOW,
        "is_active": True,
    }

    response = client.get(f"{CONSENT_URL}/policy")

    assert response.status_code == 200
    assert response.json()["version"] == "2.0"
    assert response.json()["id"] == "p1"
