from fastapi import status

from conftest import make_video

def test_server_status_idle(test_client):
    response = test_client.get("/api/status")

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["running"] is True
    assert data["pin_required"] is False
    assert data["tus_enabled"] is True
    assert data["active_uploads"] == 0
    assert data["completed_uploads"] == 0
    assert data["recent_uploads"] == []

def test_server_status_after_upload(test_client, create_upload, patch_chunk):
    content = make_video(4096)
    response = create_upload("clip.mp4", size=len(content))
    upload_id = response.json()["upload_id"]

    assert test_client.get("/api/status").json()["active_uploads"] == 1

    patch_chunk(upload_id, 0, content)
    data = test_client.get("/api/status").json()

    assert data["active_uploads"] == 0
    assert data["completed_uploads"] == 1
    assert [item["filename"] for item in data["recent_uploads"]] == ["clip.mp4"]
    assert data["recent_uploads"][0]["size"] == len(content)
    assert data["last_activity"] is not None

def test_pin_required_flag(pin_client):
    assert pin_client.get("/api/status").json()["pin_required"] is True

def test_list_resumable_uploads(test_client, create_upload, patch_chunk):
    content = make_video(4096)
    upload_id = create_upload("clip.mp4", size=len(content)).json()["upload_id"]
    patch_chunk(upload_id, 0, content[:1000])

    uploads = test_client.get("/api/uploads").json()["uploads"]

    assert len(uploads) == 1
    assert uploads[0]["upload_id"] == upload_id
    assert uploads[0]["bytes_received"] == 1000
    assert uploads[0]["current_size"] == 1000
    assert uploads[0]["can_resume"] is True
    assert uploads[0]["progress_percent"] == 24

def test_unknown_upload_status(test_client):
    response = test_client.get("/api/uploads/missing")

    assert response.status_code == status.HTTP_404_NOT_FOUND
    assert response.json()["error"] == "not_found"

def test_manual_cleanup_endpoint(test_client):
    response = test_client.post("/api/uploads/cleanup")

    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {
        "expired_sessions": 0,
        "purged_sessions": 0,
        "orphans_deleted": 0,
        "sessions_failed": 0,
        "errors": [],
    }
