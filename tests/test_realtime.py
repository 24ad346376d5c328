from datetime import datetime, timezone

import pytest

from backend.src.services.realtime import ConnectionManager, RealtimeNotifier, chatbot_topic, conversation_topic


class FakeSocket:
    def __init__(self, fail=False):
        self.fail = fail
        self.accepted = False
        self.sent = []

    async def accept(self):
        self.accepted = True

    async def send_json(self, payload):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(payload)


class ExplodingManager(ConnectionManager):
    async def publish(self, topic, payload):
        raise RuntimeError("registry broken")


async def test_publish_reaches_every_listener_on_topic():
    manager = ConnectionManager()
    first, second, other = FakeSocket(), FakeSocket(), FakeSocket()
    await manager.connect("chatbot:1", first)
    await manager.connect("chatbot:1", second)
    await manager.connect("chatbot:2", other)

    await manager.publish("chatbot:1", {"event": "ping"})

    assert first.accepted
    assert first.sent == second.sent == [{"event": "ping"}]
    assert other.sent == []


async def test_failed_send_drops_only_that_listener():
    manager = ConnectionManager()
    healthy, broken = FakeSocket(), FakeSocket(fail=True)
    await manager.connect("conversation:c", healthy)
    await manager.connect("conversation:c", broken)

    await manager.publish("conversation:c", {"event": "a"})
    await manager.publish("conversation:c", {"event": "b"})

    assert healthy.sent == [{"event": "a"}, {"event": "b"}]
    assert manager.listener_count("conversation:c") == 1


async def test_disconnect_forgets_empty_topics():
    manager = ConnectionManager()
    socket = FakeSocket()
    await manager.connect("chatbot:1", socket)

    manager.disconnect("chatbot:1", socket)
    manager.disconnect("chatbot:1", socket)

    assert manager.listener_count("chatbot:1") == 0
    assert "chatbot:1" not in manager.topics


async def test_late_subscriber_misses_earlier_events():
    manager = ConnectionManager()
    await manager.publish("chatbot:1", {"event": "early"})

    late = FakeSocket()
    await manager.connect("chatbot:1", late)

    assert late.sent == []


async def test_notifier_publishes_message_to_both_channels():
    manager = ConnectionManager()
    dashboard, visitor = FakeSocket(), FakeSocket()
    await manager.connect(chatbot_topic("bot"), dashboard)
    await manager.connect(conversation_topic("conv"), visitor)
    sent_at = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    await RealtimeNotifier(manager).publish_message("bot", "conv", "assistant", "We open at 9am.", sent_at)

    expected = {
        "event": "new_message",
        "data": {
            "conversationId": "conv",
            "role": "assistant",
            "content": "We open at 9am.",
            "timestamp": "2024-05-01T12:00:00+00:00",
        },
    }
    assert dashboard.sent == [expected]
    assert visitor.sent == [expected]


async def test_notifier_never_raises(caplog):
    notifier = RealtimeNotifier(ExplodingManager())

    await notifier.publish_message("bot", "conv", "visitor", "hi", datetime.now(timezone.utc))

    assert "Realtime publish" in caplog.text


async def test_chat_pipeline_emits_visitor_then_assistant(app, client, chatbot):
    listener = FakeSocket()
    await app.state.connection_manager.connect(chatbot_topic(chatbot["id"]), listener)

    response = await client.post(f"/api/v1/chat/{chatbot['id']}/message", json={"sessionId": "rt", "content": "Hi"})

    assert response.status_code == 200
    assert [(e["data"]["role"], e["data"]["content"]) for e in listener.sent] == [
        ("visitor", "Hi"),
        ("assistant", "echo: Hi"),
    ]
    assert {e["data"]["conversationId"] for e in listener.sent} == {response.json()["conversationId"]}


async def test_broken_listener_does_not_fail_the_request(app, client, chatbot):
    await app.state.connection_manager.connect(chatbot_topic(chatbot["id"]), FakeSocket(fail=True))

    response = await client.post(f"/api/v1/chat/{chatbot['id']}/message", json={"sessionId": "rt", "content": "Hi"})

    assert response.status_code == 200
    assert app.state.connection_manager.listener_count(chatbot_topic(chatbot["id"])) == 0


@pytest.mark.parametrize("make_topic, prefix", [(chatbot_topic, "chatbot:"), (conversation_topic, "conversation:")])
def test_topic_names(make_topic, prefix):
    assert make_topic("x") == f"{prefix}x"
