from datetime import datetime, timezone
from unittest.mock import patch

import pytest
from django.contrib.auth import get_user_model
from django.core.files.uploadedfile import SimpleUploadedFile
from kombu.exceptions import OperationalError
from rest_framework.test import APIClient

from services.agents.models import Agent
from services.calls.exceptions import UploadError
from services.calls.models import CallRecord

pytestmark = pytest.mark.django_db

EVALUATION = {
    "greeting_compliance": 5,
    "script_adherence": 4,
    "empathy_expression": 4,
    "resolution_confirmation": 5,
    "call_duration": 3,
    "overall_rating": 4,
}


@pytest.fixture
def user():
    return get_user_model().objects.create_user(username="qa", password="not-used-here")


@pytest.fixture
def client(user):
    api = APIClient()
    api.force_authenticate(user=user)
    return api


@pytest.fixture(autouse=True)
def media(settings, tmp_path):
    settings.MEDIA_ROOT = str(tmp_path)
    settings.PUBLIC_BASE_URL = "https://qa.example.com"
    settings.UPLOAD_RETRY_BASE_DELAY = 0


@pytest.fixture
def enqueue():
    with patch("services.calls.views.process_call_recording.delay") as delay:
        yield delay


def mp3(name="call.mp3", content_type="audio/mpeg"):
    return SimpleUploadedFile(name, b"ID3" + b"\x00" * 2048, content_type=content_type)


def make_call(status="completed", rating=4, agent=None, created_at=None):
    call = CallRecord.objects.create(
        file_name="call.mp3",
        storage_url="https://storage.example.com/call.mp3",
        status=status,
        evaluation={**EVALUATION, "overall_rating": rating} if rating is not None else None,
        agent=agent,
    )
    if created_at is not None:
        CallRecord.objects.filter(pk=call.pk).update(created_at=created_at)
    return call


def test_ping_is_public():
    response = APIClient().get("/api/ping/")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_requires_authentication():
    assert APIClient().get("/api/calls/").status_code in (401, 403)


class TestUpload:
    def test_upload_creates_call_and_queues_processing(self, client, user, enqueue, tmp_path):
        agent = Agent.objects.create(name="Dana", email="dana@example.com")

        response = client.post("/api/calls/", {"file": mp3(), "agent": agent.pk}, format="multipart")

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "uploaded"
        assert body["file_name"] == "call.mp3"
        assert body["agent"] == agent.pk
        assert body["storage_url"].startswith(f"https://qa.example.com/media/calls/{user.pk}/")
        enqueue.assert_called_once_with(body["id"])

        call = CallRecord.objects.get(pk=body["id"])
        assert call.uploaded_by == user
        assert (tmp_path / call.storage_key).exists()

    def test_rejects_non_mp3(self, client, enqueue):
        response = client.post(
            "/api/calls/",
            {"file": mp3("notes.txt", content_type="text/plain")},
            format="multipart",
        )

        assert response.status_code == 400
        assert CallRecord.objects.count() == 0
        enqueue.assert_not_called()

    def test_permanent_upload_failure(self, client, enqueue):
        with patch(
            "services.calls.stores.DjangoStorageObjectStore.upload",
            side_effect=UploadError("bucket unreachable"),
        ) as upload:
            response = client.post("/api/calls/", {"file": mp3()}, format="multipart")

        assert response.status_code == 502
        assert "Upload failed" in response.json()["detail"]
        assert upload.call_count == 3
        assert CallRecord.objects.count() == 0
        enqueue.assert_not_called()

    def test_broker_down_keeps_call_uploaded(self, client, enqueue):
        enqueue.side_effect = OperationalError("Error 111 connecting to localhost:6379")

        response = client.post("/api/calls/", {"file": mp3()}, format="multipart")

        assert response.status_code == 503
        body = response.json()
        assert "could not be queued" in body["detail"]
        assert CallRecord.objects.get(pk=body["id"]).status == "uploaded"


class TestCallActions:
    def test_retrieve(self, client):
        call = make_call()

        body = client.get(f"/api/calls/{call.pk}/").json()

        assert body["status"] == "completed"
        assert body["evaluation"]["overall_rating"] == 4.0

    def test_retrieve_unprocessed_call(self, client):
        call = make_call(status="uploaded", rating=None)

        body = client.get(f"/api/calls/{call.pk}/").json()

        assert body["evaluation"] is None
        assert body["agent_name"] is None

    def test_process_only_uploaded_calls(self, client, enqueue):
        waiting = make_call(status="uploaded", rating=None)
        done = make_call(status="completed")

        assert client.post(f"/api/calls/{waiting.pk}/process/").status_code == 202
        assert client.post(f"/api/calls/{done.pk}/process/").status_code == 400
        enqueue.assert_called_once_with(waiting.pk)

    def test_process_reports_broker_outage(self, client, enqueue):
        enqueue.side_effect = OperationalError("broker unreachable")
        call = make_call(status="uploaded", rating=None)

        response = client.post(f"/api/calls/{call.pk}/process/")

        assert response.status_code == 503
        assert "Retry via /process/" in response.json()["detail"]
        call.refresh_from_db()
        assert call.status == "uploaded"

    def test_assign_agent_once(self, client):
        dana = Agent.objects.create(name="Dana", email="dana@example.com")
        lior = Agent.objects.create(name="Lior", email="lior@example.com")
        call = make_call(status="uploaded", rating=None)

        first = client.post(f"/api/calls/{call.pk}/assign-agent/", {"agent": dana.pk}, format="json")
        second = client.post(f"/api/calls/{call.pk}/assign-agent/", {"agent": lior.pk}, format="json")

        assert first.status_code == 200
        assert first.json()["agent_name"] == "Dana"
        assert second.status_code == 400
        call.refresh_from_db()
        assert call.agent == dana


class TestAgents:
    def test_add_and_list(self, client):
        created = client.post("/api/agents/", {"name": "Noa", "email": "noa@example.com"}, format="json")
        listed = client.get("/api/agents/")

        assert created.status_code == 201
        assert created.json()["created_at"]
        assert [a["name"] for a in listed.json()] == ["Noa"]

    def test_invalid_email(self, client):
        response = client.post("/api/agents/", {"name": "Noa", "email": "nope"}, format="json")

        assert response.status_code == 400


class TestDashboard:
    def test_aggregates_completed_calls_only(self, client):
        dana = Agent.objects.create(name="Dana", email="dana@example.com")
        Agent.objects.create(name="Lior", email="lior@example.com")
        make_call(rating=5, agent=dana, created_at=datetime(2024, 1, 1, 10, tzinfo=timezone.utc))
        make_call(rating=3, agent=dana, created_at=datetime(2024, 1, 1, 22, tzinfo=timezone.utc))
        make_call(rating=4, created_at=datetime(2024, 1, 2, 1, tzinfo=timezone.utc))
        make_call(status="failed", rating=None, created_at=datetime(2024, 1, 2, 2, tzinfo=timezone.utc))

        body = client.get("/api/dashboard/").json()

        assert body["summary"] == {"total_calls": 3, "overall_average_score": 4.0}
        assert [(t["bucket_key"], t["call_volume"]) for t in body["trends"]] == [
            ("2024-01-01", 2),
            ("2024-01-02", 1),
        ]
        assert body["leaderboard"][0]["agent_name"] == "Dana"
        assert body["leaderboard"][0]["average_score"] == 4.0
        assert body["leaderboard"][1] == {
            "agent_id": body["leaderboard"][1]["agent_id"],
            "agent_name": "Lior",
            "total_calls": 0,
            "average_score": 0.0,
        }

    def test_date_range_and_granularity(self, client):
        make_call(rating=5, created_at=datetime(2024, 1, 10, 12, tzinfo=timezone.utc))
        make_call(rating=1, created_at=datetime(2024, 2, 10, 12, tzinfo=timezone.utc))
        make_call(rating=3, created_at=datetime(2024, 3, 10, 12, tzinfo=timezone.utc))

        body = client.get(
            "/api/dashboard/",
            {"granularity": "monthly", "date_from": "2024-02-01", "date_to": "2024-03-10"},
        ).json()

        assert [t["bucket_key"] for t in body["trends"]] == ["2024-02", "2024-03"]
        assert body["summary"]["total_calls"] == 2

    def test_empty_dashboard(self, client):
        body = client.get("/api/dashboard/").json()

        assert body == {
            "summary": {"total_calls": 0, "overall_average_score": 0.0},
            "trends": [],
            "leaderboard": [],
        }

    def test_invalid_query(self, client):
        assert client.get("/api/dashboard/", {"granularity": "hourly"}).status_code == 400
        assert (
            client.get("/api/dashboard/", {"date_from": "2024-03-01", "date_to": "2024-02-01"}).status_code
            == 400
        )
