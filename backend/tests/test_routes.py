"""
Tests for the HTTP surface.
"""

from datetime import timedelta

from .conftest import token_for


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


class TestChat:
    async def test_anonymous_chat(self, client, app, alice):
        response = await client.post("/api/chat", json={"message": "Hello"})

        assert response.status_code == 200
        body = response.json()
        assert body == {"message": "Echo: Hello", "threadId": "thread_1", "tag": "default"}

        _, total = await app.state.history.list_conversations(alice.user_id)
        assert total == 0

    async def test_invalid_token_still_answers(self, client):
        response = await client.post(
            "/api/chat",
            json={"message": "Hello"},
            headers={"Authorization": "Bearer not-a-token"}
        )
        assert response.status_code == 200

    async def test_authenticated_chat_is_saved(self, client, headers):
        first = await client.post("/api/chat", json={"message": "Hello"}, headers=headers["alice"])
        thread_id = first.json()["threadId"]
        second = await client.post(
            "/api/chat",
            json={"message": "Hi", "threadId": thread_id},
            headers=headers["alice"]
        )
        assert second.json()["threadId"] == thread_id

        listing = await client.get("/api/chat/history", headers=headers["alice"])
        assert listing.json()["total"] == 1
        summary = listing.json()["conversations"][0]
        assert summary["threadId"] == thread_id
        assert summary["title"] == "Hello"
        assert summary["messageCount"] == 4
        assert summary["lastMessage"] == "Echo: Hi"

    async def test_personal_assistant_tag(self, client, headers):
        response = await client.post("/api/chat", json={"message": "Hello"}, headers=headers["bob"])
        assert response.json()["tag"] == "personal"

    async def test_attachment_in_reply(self, client):
        response = await client.post("/api/chat", json={"message": "show me the alerter"})
        attachment = response.json()["attachment"]
        assert attachment["name"] == "alerter"
        assert attachment["displayName"] == "Alerter"
        assert attachment["type"] == "trainPart"

    async def test_blank_message(self, client):
        response = await client.post("/api/chat", json={"message": "  "})
        assert response.status_code == 400
        assert response.json()["detail"] == "Message cannot be empty"

    async def test_assistant_failure(self, client, assistant, headers, app, alice):
        assistant.fail = True
        response = await client.post("/api/chat", json={"message": "Hello"}, headers=headers["alice"])

        assert response.status_code == 502
        _, total = await app.state.history.list_conversations(alice.user_id)
        assert total == 0


class TestHistory:
    async def test_requires_authentication(self, client):
        assert (await client.get("/api/chat/history")).status_code == 401
        assert (await client.get("/api/chat/stats")).status_code == 401

        response = await client.get("/api/chat/history", headers={"Authorization": "Bearer junk"})
        assert response.status_code == 401
        assert response.json()["detail"] == "Could not validate credentials"

    async def test_expired_token_rejected(self, client, alice):
        token = token_for(alice, expires_delta=timedelta(minutes=-5))
        response = await client.get("/api/chat/history", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    async def test_disabled_user_rejected(self, client, headers):
        response = await client.get("/api/chat/history", headers=headers["carol"])
        assert response.status_code == 401

    async def test_save_and_load(self, client, headers):
        body = {
            "threadId": "thread_saved",
            "messages": [
                {"role": "user", "content": "Show me the alerter"},
                {
                    "role": "assistant",
                    "content": "Here it is",
                    "trainPart": {"name": "alerter", "displayName": "Alerter"},
                    "assistantType": "default"
                }
            ]
        }
        first = await client.post("/api/chat/history", json=body, headers=headers["alice"])
        second = await client.post("/api/chat/history", json=body, headers=headers["alice"])

        assert first.json()["created"] is True
        assert second.json()["created"] is False
        assert second.json()["messageCount"] == 2

        detail = await client.get("/api/chat/history/thread_saved", headers=headers["alice"])
        conversation = detail.json()["conversation"]
        assert conversation["title"] == "Show me the alerter"
        assert [m["role"] for m in conversation["messages"]] == ["user", "assistant"]
        assert conversation["messages"][1]["attachment"]["displayName"] == "Alerter"
        assert conversation["messages"][1]["tag"] == "default"

    async def test_save_validation(self, client, headers):
        response = await client.post(
            "/api/chat/history",
            json={"threadId": "t", "messages": []},
            headers=headers["alice"]
        )
        assert response.status_code == 400

        response = await client.post(
            "/api/chat/history",
            json={"threadId": "t", "messages": [{"role": "system", "content": "x"}]},
            headers=headers["alice"]
        )
        assert response.status_code == 422

    async def test_other_users_thread_is_not_found(self, client, headers):
        await client.post("/api/chat", json={"message": "Hello"}, headers=headers["alice"])

        response = await client.get("/api/chat/history/thread_1", headers=headers["bob"])
        assert response.status_code == 404
        assert response.json()["detail"] == "Conversation not found"

    async def test_delete(self, client, headers):
        await client.post("/api/chat", json={"message": "Hello"}, headers=headers["alice"])

        foreign = await client.delete("/api/chat/history/thread_1", headers=headers["bob"])
        assert foreign.json()["deleted"] is False

        deleted = await client.delete("/api/chat/history/thread_1", headers=headers["alice"])
        assert deleted.status_code == 200
        assert deleted.json()["deleted"] is True

        again = await client.delete("/api/chat/history/thread_1", headers=headers["alice"])
        assert again.status_code == 200
        assert again.json()["deleted"] is False

        missing = await client.get("/api/chat/history/thread_1", headers=headers["alice"])
        assert missing.status_code == 404

    async def test_stats_and_search(self, client, headers):
        await client.post("/api/chat", json={"message": "Brake pressure"}, headers=headers["alice"])

        stats = await client.get("/api/chat/stats", headers=headers["alice"])
        assert stats.json()["totalConversations"] == 1
        assert stats.json()["totalMessages"] == 2

        found = await client.get("/api/chat/search", params={"q": "brake"}, headers=headers["alice"])
        assert found.json()["total"] == 1
        assert found.json()["results"][0]["threadId"] == "thread_1"

        too_short = await client.get("/api/chat/search", params={"q": "b"}, headers=headers["alice"])
        assert too_short.status_code == 400

    async def test_search_filters(self, client, headers):
        await client.post("/api/chat", json={"message": "show me schematic page 13"}, headers=headers["alice"])
        await client.post("/api/chat", json={"message": "page count of the manual"}, headers=headers["alice"])

        found = await client.get(
            "/api/chat/search",
            params={"q": "page", "messageType": "schematics", "dateRange": "today", "sortBy": "relevance"},
            headers=headers["alice"]
        )
        assert found.status_code == 200
        assert [r["threadId"] for r in found.json()["results"]] == ["thread_1"]

        bad = await client.get(
            "/api/chat/search", params={"q": "page", "dateRange": "decade"}, headers=headers["alice"]
        )
        assert bad.status_code == 400

    async def test_export(self, client, headers):
        await client.post("/api/chat", json={"message": "Hello"}, headers=headers["alice"])

        as_json = await client.get("/api/chat/export/thread_1", headers=headers["alice"])
        assert as_json.status_code == 200
        assert "conversation-thread_1.json" in as_json.headers["content-disposition"]
        assert as_json.json()["conversation"]["title"] == "Hello"

        as_text = await client.get(
            "/api/chat/export/thread_1", params={"format": "txt"}, headers=headers["alice"]
        )
        assert as_text.headers["content-type"].startswith("text/plain")
        assert as_text.text.startswith("Conversation: Hello")

        bad = await client.get(
            "/api/chat/export/thread_1", params={"format": "pdf"}, headers=headers["alice"]
        )
        assert bad.status_code == 400
