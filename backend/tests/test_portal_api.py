# tests/test_portal_api.py — Stakeholder portal endpoints
import pytest

from models import AccessMode, SpaceStatus
from portal_auth import GRANT_MEMBER, session_cookie_name, session_manager
from tests.conftest import get_auth_headers, portal_headers

FORM = {"title": "Kickoff", "questions": [{"id": "Q1", "label": "Company?"}, {"id": "Q2", "label": "Size?"}]}
TASKS = {"tasks": [{"id": "T1", "title": "Sign contract"}, {"id": "T2", "title": "Pay invoice"}]}


async def portal(spaces):
    space = await spaces.space(welcome_popup={"enabled": True, "title": "Hello"})
    await spaces.member(space, "alice@x.com")
    page = await spaces.page(space, "kickoff")
    form = await spaces.block(page, "form", FORM)
    tasks = await spaces.block(page, "task", TASKS, sort_order=1)
    upload = await spaces.block(page, "file_upload", {"label": "Logo"}, sort_order=2)
    return space, page, form, tasks, upload


@pytest.mark.asyncio
class TestReading:
    async def test_member_reads_space_and_pages(self, client, spaces):
        space, page, form, _tasks, _upload = await portal(spaces)
        headers = portal_headers(space.id, "alice@x.com")

        response = await client.get(f"/api/v1/portal/{space.id}", headers=headers)
        assert response.status_code == 200
        data = response.json()
        assert data["read_only"] is False
        assert data["show_welcome_popup"] is True

        pages = await client.get(f"/api/v1/portal/{space.id}/pages", headers=headers)
        assert [p["slug"] for p in pages.json()] == ["kickoff"]

        detail = await client.get(f"/api/v1/portal/{space.id}/pages/kickoff", headers=headers)
        assert detail.status_code == 200
        assert [b["type"] for b in detail.json()["blocks"]] == ["form", "task", "file_upload"]

    async def test_session_cookie_is_accepted(self, client, spaces):
        space, *_ = await portal(spaces)
        token, _claims = session_manager.create(space.id, "alice@x.com", grant=GRANT_MEMBER)
        response = await client.get(
            f"/api/v1/portal/{space.id}/pages",
            headers={"Cookie": f"{session_cookie_name(space.id)}={token}"},
        )
        assert response.status_code == 200

    async def test_session_for_another_space_is_anonymous(self, client, spaces):
        space, *_ = await portal(spaces)
        response = await client.get(f"/api/v1/portal/{space.id}/pages", headers=portal_headers("other", "alice@x.com"))
        assert response.status_code == 403
        assert response.json()["code"] == "unauthorized"

    async def test_access_decision_endpoint(self, client, spaces):
        space, *_ = await portal(spaces)
        anonymous = await client.get(f"/api/v1/portal/{space.id}/access")
        assert anonymous.json() == {"allowed": False, "reason": "unauthorized", "read_only": False}

        member = await client.get(f"/api/v1/portal/{space.id}/access", headers=portal_headers(space.id, "alice@x.com"))
        assert member.json() == {"allowed": True, "reason": None, "read_only": False}

    async def test_draft_space_is_not_found_for_stakeholders(self, client, spaces):
        space = await spaces.space(status=SpaceStatus.DRAFT, access_mode=AccessMode.PUBLIC)
        response = await client.get(f"/api/v1/portal/{space.id}")
        assert response.status_code == 404
        assert response.json()["code"] == "not_found"

    async def test_staff_token_previews_restricted_space(self, client, spaces, staff_user):
        space, *_ = await portal(spaces)
        response = await client.get(f"/api/v1/portal/{space.id}", headers=get_auth_headers(staff_user))
        assert response.status_code == 200
        assert response.json()["show_welcome_popup"] is False

    async def test_non_member_staff_token_is_ignored(self, client, spaces, outsider_user):
        space, *_ = await portal(spaces)
        response = await client.get(f"/api/v1/portal/{space.id}/pages", headers=get_auth_headers(outsider_user))
        assert response.status_code == 403

    async def test_missing_page(self, client, spaces):
        space, *_ = await portal(spaces)
        response = await client.get(
            f"/api/v1/portal/{space.id}/pages/nope", headers=portal_headers(space.id, "alice@x.com")
        )
        assert response.status_code == 404


@pytest.mark.asyncio
class TestWriting:
    async def test_answers_merge_per_question(self, client, spaces):
        space, page, form, *_ = await portal(spaces)
        headers = portal_headers(space.id, "alice@x.com")
        base = f"/api/v1/portal/{space.id}/blocks/{form.id}/questions"

        first = await client.put(f"{base}/Q1", json={"answer": {"text": "Acme"}}, headers=headers)
        assert first.status_code == 200
        assert first.json()["customer_email"] == "alice@x.com"
        await client.put(f"{base}/Q2", json={"answer": {"selected": ["50+"]}}, headers=headers)

        answers = await client.get(f"/api/v1/portal/{space.id}/pages/{page.id}/response-map", headers=headers)
        assert answers.json() == {
            f"{form.id}-Q1": {"text": "Acme"},
            f"{form.id}-Q2": {"selected": ["50+"]},
        }
        rows = await client.get(f"/api/v1/portal/{space.id}/pages/{page.id}/responses", headers=headers)
        assert len(rows.json()) == 1

    async def test_task_toggle_round_trip(self, client, spaces):
        space, page, _form, tasks, _upload = await portal(spaces)
        headers = portal_headers(space.id, "alice@x.com")
        url = f"/api/v1/portal/{space.id}/blocks/{tasks.id}/tasks/T1/toggle"

        done = await client.post(url, headers=headers)
        assert done.json() == {"key": f"{tasks.id}-T1", "status": "completed"}
        task_map = await client.get(f"/api/v1/portal/{space.id}/pages/{page.id}/task-map", headers=headers)
        assert task_map.json()[f"{tasks.id}-T1"] == "completed"

        undone = await client.post(url, headers=headers)
        assert undone.json()["status"] == "pending"

    async def test_unknown_task_is_not_found(self, client, spaces):
        space, _page, _form, tasks, _upload = await portal(spaces)
        response = await client.post(
            f"/api/v1/portal/{space.id}/blocks/{tasks.id}/tasks/T9/toggle",
            headers=portal_headers(space.id, "alice@x.com"),
        )
        assert response.status_code == 404

    async def test_file_lifecycle(self, client, spaces):
        space, _page, _form, _tasks, upload = await portal(spaces)
        headers = portal_headers(space.id, "alice@x.com")
        created = await client.post(
            f"/api/v1/portal/{space.id}/blocks/{upload.id}/files",
            json={"original_name": "logo.png", "mime_type": "image/png", "size_bytes": 10, "storage_path": "s/logo.png"},
            headers=headers,
        )
        assert created.status_code == 201
        file_id = created.json()["id"]
        assert created.json()["uploaded_by_email"] == "alice@x.com"

        downloaded = await client.post(f"/api/v1/portal/{space.id}/files/{file_id}/download", headers=headers)
        assert downloaded.json()["original_name"] == "logo.png"

        deleted = await client.delete(f"/api/v1/portal/{space.id}/files/{file_id}", headers=headers)
        assert deleted.json() == {"status": "deleted", "id": file_id}
        listed = await client.get(f"/api/v1/portal/{space.id}/blocks/{upload.id}/files", headers=headers)
        assert listed.json() == []

    async def test_file_meta_validated(self, client, spaces):
        space, _page, _form, _tasks, upload = await portal(spaces)
        response = await client.post(
            f"/api/v1/portal/{space.id}/blocks/{upload.id}/files",
            json={"original_name": "", "storage_path": "s"},
            headers=portal_headers(space.id, "alice@x.com"),
        )
        assert response.status_code == 422

    async def test_completed_space_is_read_only(self, client, spaces):
        space = await spaces.space(status=SpaceStatus.COMPLETED, access_mode=AccessMode.PUBLIC)
        page = await spaces.page(space, "done")
        form = await spaces.block(page, "form", FORM)

        response = await client.put(
            f"/api/v1/portal/{space.id}/blocks/{form.id}/questions/Q1", json={"answer": {"text": "late"}}
        )
        assert response.status_code == 409
        assert response.json()["code"] == "read_only"

        viewed = await client.post(f"/api/v1/portal/{space.id}/pages/{page.id}/view")
        assert viewed.json() == {"status": "recorded"}


@pytest.mark.asyncio
class TestTracking:
    async def test_visit_then_dedup(self, client, spaces):
        space, *_ = await portal(spaces)
        headers = portal_headers(space.id, "alice@x.com")

        first = await client.post(f"/api/v1/portal/{space.id}/visit", headers=headers)
        assert first.json() == {"recorded": True, "first_visit": True}
        again = await client.post(f"/api/v1/portal/{space.id}/visit", headers=headers)
        assert again.json() == {"recorded": False, "first_visit": False}

    async def test_welcome_popup_dismissed(self, client, spaces):
        space, *_ = await portal(spaces)
        headers = portal_headers(space.id, "alice@x.com")

        dismissed = await client.post(f"/api/v1/portal/{space.id}/welcome-popup/dismiss", headers=headers)
        assert dismissed.json() == {"status": "dismissed", "persisted": True}
        response = await client.get(f"/api/v1/portal/{space.id}", headers=headers)
        assert response.json()["show_welcome_popup"] is False

    async def test_error_body_carries_request_id(self, client, spaces):
        space, *_ = await portal(spaces)
        response = await client.post(f"/api/v1/portal/{space.id}/visit")
        assert response.status_code == 403
        body = response.json()
        assert body["code"] == "unauthorized"
        assert body["request_id"] == response.headers["X-Request-ID"]
