import asyncio
from datetime import datetime, timezone

from ceo_report_agent.chat import collect_chat, conversation_label, merge_thread_replies, resolve_mentions
from ceo_report_agent.models import ChatMessage

BASE_TS = 1_700_000_000
NOW = datetime.fromtimestamp(BASE_TS + 3600, tz=timezone.utc)


def ts(offset):
    return f"{BASE_TS + offset}.000100"


class FakeSlackClient:
    """Minimal async stand-in for the Web API methods the collector calls."""

    def __init__(self, conversations=None, history=None, replies=None, failing=(), members=None):
        self.conversations = conversations or {}
        self.history = history or {}
        self.replies = replies or {}
        self.failing = set(failing)
        self.members = members if members is not None else [
            {"id": "U1", "real_name": "Alice"},
            {"id": "U2", "name": "bob", "profile": {"display_name": "Bobby"}},
        ]
        self.history_calls = []

    async def users_list(self, cursor=None, limit=None):
        return {"members": self.members, "response_metadata": {"next_cursor": ""}}

    async def conversations_list(self, cursor=None, limit=None, types=None, exclude_archived=None):
        return {"channels": self.conversations.get(types, []), "response_metadata": {"next_cursor": ""}}

    async def conversations_history(self, channel, cursor=None, limit=None, oldest=None, latest=None):
        self.history_calls.append((channel, oldest, latest))
        if channel in self.failing:
            raise RuntimeError("missing_scope")
        return {"messages": self.history.get(channel, []), "response_metadata": {"next_cursor": ""}}

    async def conversations_replies(self, channel, ts, cursor=None, limit=None):
        return {"messages": self.replies.get((channel, ts), []), "response_metadata": {"next_cursor": ""}}


def _message(text, timestamp, channel="#general", reply=False):
    return ChatMessage(channel=channel, channel_id="C1", author="Alice", text=text, timestamp=timestamp, is_thread_reply=reply)


def test_merge_thread_replies_never_duplicates():
    existing = [_message("parent", ts(0)), _message("broadcast", ts(5))]
    replies = [_message("broadcast", ts(5), reply=True), _message("new", ts(9), reply=True), _message("new", ts(9), reply=True)]

    merged = merge_thread_replies(existing, replies)

    assert [m.text for m in merged] == ["parent", "broadcast", "new"]
    assert len({(m.timestamp, m.channel_id) for m in merged}) == len(merged)


def test_merge_thread_replies_distinguishes_channels():
    existing = [_message("a", ts(0))]
    other = ChatMessage(channel="#random", channel_id="C2", author="Bob", text="b", timestamp=ts(0))

    assert len(merge_thread_replies(existing, [other])) == 2


def test_resolve_mentions():
    assert resolve_mentions("hi <@U1> and <@U9|x>", {"U1": "Alice"}) == "hi @Alice and @U9"


def test_conversation_label():
    names = {"U1": "Alice"}
    assert conversation_label({"id": "C1", "name": "general"}, names) == ("#general", False)
    assert conversation_label({"id": "D1", "is_im": True, "user": "U1"}, names) == ("DM:Alice", True)
    assert conversation_label({"id": "G1", "is_mpim": True, "name": "mpdm-a--b-1"}, names) == ("그룹DM:mpdm-a--b-1", True)


def test_collect_chat_merges_threads_and_resolves_names(settings):
    client = FakeSlackClient(
        conversations={"public_channel,private_channel": [{"id": "C1", "name": "general"}]},
        history={
            "C1": [
                {"ts": ts(30), "user": "U2", "text": "broadcast reply", "subtype": "thread_broadcast", "thread_ts": ts(0)},
                {"ts": ts(20), "user": "U1", "subtype": "channel_join", "text": "<@U1> has joined"},
                {"ts": ts(0), "user": "U1", "text": "launch plan <@U2>", "reply_count": 2, "thread_ts": ts(0)},
            ]
        },
        replies={
            ("C1", ts(0)): [
                {"ts": ts(0), "user": "U1", "text": "launch plan <@U2>", "thread_ts": ts(0)},
                {"ts": ts(30), "user": "U2", "text": "broadcast reply", "thread_ts": ts(0)},
                {"ts": ts(40), "user": "U2", "text": "second reply", "thread_ts": ts(0)},
            ]
        },
    )

    messages = asyncio.run(collect_chat(settings, 1, bot_client=client, now=NOW))

    assert [m.text for m in messages] == ["launch plan @Bobby", "broadcast reply", "second reply"]
    assert [m.author for m in messages] == ["Alice", "Bobby", "Bobby"]
    assert [m.is_thread_reply for m in messages] == [False, False, True]
    assert messages[0].reply_count == 2
    channel, oldest, latest = client.history_calls[0]
    assert float(latest) - float(oldest) == 86400


def test_failing_conversation_is_skipped(settings):
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    client = FakeSlackClient(
        conversations={
            "public_channel,private_channel": [
                {"id": "C1", "name": "general"},
                {"id": "C2", "name": "secret"},
                {"id": "C3", "name": "dev"},
            ]
        },
        history={
            "C1": [{"ts": ts(1), "user": "U1", "text": "one"}],
            "C3": [{"ts": ts(2), "user": "U2", "text": "three"}],
        },
        failing={"C2"},
    )

    messages = asyncio.run(collect_chat(settings, 1, bot_client=client, now=NOW, sleep=fake_sleep))

    assert [(m.channel, m.text) for m in messages] == [("#general", "one"), ("#dev", "three")]
    assert sleeps == [settings.slack_request_delay_seconds] * 2


def test_direct_messages_use_user_client(settings):
    bot = FakeSlackClient()
    user = FakeSlackClient(
        conversations={"im,mpim": [{"id": "D1", "is_im": True, "user": "U2"}]},
        history={"D1": [{"ts": ts(3), "user": "U2", "text": "대표님 확인 부탁드립니다"}]},
    )

    async def no_sleep(seconds):
        return None

    messages = asyncio.run(collect_chat(settings, 1, bot_client=bot, user_client=user, now=NOW, sleep=no_sleep))

    assert len(messages) == 1
    assert messages[0].channel == "DM:Bobby"
    assert messages[0].is_direct


def test_collect_chat_without_token_returns_empty(settings):
    assert asyncio.run(collect_chat(settings, 1)) == []
