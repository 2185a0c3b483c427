"""Slack collection: channel history, direct messages and thread replies."""

from __future__ import annotations

import asyncio
import re
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

import structlog
from slack_sdk.web.async_client import AsyncWebClient

from .config import Settings
from .models import ChatMessage

LOGGER = structlog.get_logger(__name__)

CHANNEL_TYPES = "public_channel,private_channel"
DIRECT_TYPES = "im,mpim"
PAGE_LIMIT = 200
SKIPPED_SUBTYPES = {"channel_join", "channel_leave", "channel_topic", "channel_purpose", "bot_add"}
UNKNOWN_USER = "알 수 없음"
MENTION_PATTERN = re.compile(r"<@([A-Z0-9]+)(?:\|[^>]*)?>")

Sleep = Callable[[float], Awaitable[Any]]


def _next_cursor(response: Any) -> Optional[str]:
    metadata = response.get("response_metadata") or {}
    return metadata.get("next_cursor") or None


async def _paginate(call: Callable[..., Awaitable[Any]], key: str, **kwargs: Any) -> List[Dict[str, Any]]:
    """Collect ``key`` from every page of a cursor-paginated Web API method."""
    items: List[Dict[str, Any]] = []
    cursor: Optional[str] = None
    while True:
        response = await call(cursor=cursor, limit=PAGE_LIMIT, **kwargs)
        items.extend(response.get(key) or [])
        cursor = _next_cursor(response)
        if not cursor:
            return items


async def load_user_names(client: AsyncWebClient) -> Dict[str, str]:
    """Map user ids to the best available display name."""
    try:
        members = await _paginate(client.users_list, "members")
    except Exception as exc:  # noqa: BLE001
        LOGGER.warning("chat.users_failed", error=str(exc))
        return {}

    names: Dict[str, str] = {}
    for member in members:
        profile = member.get("profile") or {}
        names[member["id"]] = (
            member.get("real_name")
            or profile.get("real_name")
            or profile.get("display_name")
            or member.get("name")
            or UNKNOWN_USER
        )
    return names


def resolve_mentions(text: str, user_names: Dict[str, str]) -> str:
    return MENTION_PATTERN.sub(lambda match: "@" + user_names.get(match.group(1), match.group(1)), text)


def merge_thread_replies(messages: List[ChatMessage], replies: Iterable[ChatMessage]) -> List[ChatMessage]:
    """Append replies whose (timestamp, channel) pair is not already present."""
    seen = {(message.timestamp, message.channel_id or message.channel) for message in messages}
    merged = list(messages)
    for reply in replies:
        key = (reply.timestamp, reply.channel_id or reply.channel)
        if key in seen:
            continue
        seen.add(key)
        merged.append(reply)
    return merged


def conversation_label(conversation: Dict[str, Any], user_names: Dict[str, str]) -> Tuple[str, bool]:
    """Human-readable label for a channel or DM, and whether it is a direct conversation."""
    if conversation.get("is_im"):
        return f"DM:{user_names.get(conversation.get('user', ''), UNKNOWN_USER)}", True
    if conversation.get("is_mpim"):
        return f"그룹DM:{conversation.get('name', '')}", True
    return f"#{conversation.get('name', conversation.get('id', ''))}", False


def _to_message(
    raw: Dict[str, Any],
    *,
    label: str,
    channel_id: str,
    is_direct: bool,
    user_names: Dict[str, str],
    is_thread_reply: bool = False,
) -> Optional[ChatMessage]:
    if raw.get("subtype") in SKIPPED_SUBTYPES:
        return None
    text = (raw.get("text") or "").strip()
    if not text or not raw.get("ts"):
        return None
    user_id = raw.get("user") or raw.get("bot_id") or ""
    author = user_names.get(user_id) or (raw.get("username") or UNKNOWN_USER)
    return ChatMessage(
        channel=label,
        channel_id=channel_id,
        author=author,
        text=resolve_mentions(text, user_names),
        timestamp=str(raw["ts"]),
        is_thread_reply=is_thread_reply,
        reply_count=int(raw.get("reply_count") or 0),
        is_direct=is_direct,
    )


async def fetch_conversation(
    client: AsyncWebClient,
    conversation: Dict[str, Any],
    *,
    oldest: float,
    latest: float,
    user_names: Dict[str, str],
) -> List[ChatMessage]:
    """History for one conversation with thread replies merged in, oldest first."""
    channel_id = conversation["id"]
    label, is_direct = conversation_label(conversation, user_names)

    history = await _paginate(
        client.conversations_history,
        "messages",
        channel=channel_id,
        oldest=f"{oldest:.6f}",
        latest=f"{latest:.6f}",
    )

    messages: List[ChatMessage] = []
    threads: List[str] = []
    for raw in history:
        message = _to_message(raw, label=label, channel_id=channel_id, is_direct=is_direct, user_names=user_names)
        if message is None:
            continue
        messages.append(message)
        if message.reply_count > 0:
            threads.append(str(raw.get("thread_ts") or raw["ts"]))

    for thread_ts in threads:
        raw_replies = await _paginate(client.conversations_replies, "messages", channel=channel_id, ts=thread_ts)
        replies = [
            reply
            for reply in (
                _to_message(
                    raw,
                    label=label,
                    channel_id=channel_id,
                    is_direct=is_direct,
                    user_names=user_names,
                    is_thread_reply=True,
                )
                for raw in raw_replies
                if str(raw.get("ts")) != thread_ts
            )
            if reply is not None
        ]
        messages = merge_thread_replies(messages, replies)

    messages.sort(key=lambda message: float(message.timestamp))
    return messages


async def _list_conversations(client: AsyncWebClient, types: str) -> List[Dict[str, Any]]:
    try:
        return await _paginate(client.conversations_list, "channels", types=types, exclude_archived=True)
    except Exception as exc:  # noqa: BLE001
        LOGGER.warning("chat.list_failed", types=types, error=str(exc))
        return []


async def collect_chat(
    settings: Settings,
    days: int,
    *,
    bot_client: Optional[AsyncWebClient] = None,
    user_client: Optional[AsyncWebClient] = None,
    now: Optional[datetime] = None,
    sleep: Sleep = asyncio.sleep,
) -> List[ChatMessage]:
    """Messages from every reachable channel and DM within the last ``days`` days."""
    if bot_client is None:
        if settings.slack_bot_token is None:
            LOGGER.info("chat.skipped", reason="bot token not configured")
            return []
        bot_client = AsyncWebClient(token=settings.slack_bot_token.get_secret_value())
    if user_client is None and settings.slack_user_token is not None:
        user_client = AsyncWebClient(token=settings.slack_user_token.get_secret_value())

    latest = (now or datetime.now(tz=timezone.utc)).timestamp()
    oldest = latest - days * 86400

    user_names = await load_user_names(bot_client)

    targets: List[Tuple[AsyncWebClient, Dict[str, Any]]] = [
        (bot_client, conversation) for conversation in await _list_conversations(bot_client, CHANNEL_TYPES)
    ]
    if user_client is not None:
        targets.extend(
            (user_client, conversation) for conversation in await _list_conversations(user_client, DIRECT_TYPES)
        )

    LOGGER.info("chat.fetch.start", conversations=len(targets), days=days)

    messages: List[ChatMessage] = []
    failures = 0
    for index, (client, conversation) in enumerate(targets):
        if index:
            await sleep(settings.slack_request_delay_seconds)
        try:
            messages.extend(
                await fetch_conversation(
                    client,
                    conversation,
                    oldest=oldest,
                    latest=latest,
                    user_names=user_names,
                )
            )
        except Exception as exc:  # noqa: BLE001
            failures += 1
            LOGGER.warning(
                "chat.conversation_failed",
                conversation=conversation.get("name") or conversation.get("id"),
                error=str(exc),
            )

    LOGGER.info("chat.fetch.success", messages=len(messages), failures=failures)
    return messages
