"""Notion collection: recently edited pages found by search, traversal and database queries.

Three discovery strategies run one after another and share a single time
budget. When the budget runs out the remaining work is skipped and whatever
was collected so far is returned. Individual page, block and comment fetches
that fail are logged and skipped.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import httpx
import structlog
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from .config import Settings
from .models import DocumentComment, DocumentPage, DocumentStats
from .utils import parse_timestamp, truncate

LOGGER = structlog.get_logger(__name__)

NOTION_BASE_URL = "https://api.notion.com/v1"
NOTION_VERSION = "2022-06-28"
MAX_BLOCK_DEPTH = 4
MAX_PAGE_DEPTH = 2
MAX_PAGES = 40
SEARCH_BATCH_SIZE = 5
DATABASE_ROW_LIMIT = 20
UNKNOWN_USER = "알 수 없음"

TEXT_PREFIXES: Dict[str, str] = {
    "paragraph": "",
    "heading_1": "# ",
    "heading_2": "## ",
    "heading_3": "### ",
    "bulleted_list_item": "- ",
    "numbered_list_item": "1. ",
    "quote": "> ",
    "callout": "💡 ",
    "toggle": "▸ ",
    "code": "",
    "table_row": "",
}


# ---- Block kinds ----------------------------------------------------------


@dataclass
class TextBlock:
    block_id: str
    kind: str
    text: str
    has_children: bool = False


@dataclass
class TodoBlock:
    block_id: str
    text: str
    checked: bool
    has_children: bool = False


@dataclass
class ChildPageBlock:
    block_id: str
    title: str


@dataclass
class ChildDatabaseBlock:
    block_id: str
    title: str


@dataclass
class UnsupportedBlock:
    block_id: str
    kind: str
    has_children: bool = False


Block = Union[TextBlock, TodoBlock, ChildPageBlock, ChildDatabaseBlock, UnsupportedBlock]


def plain_text(rich_text: Optional[List[Dict[str, Any]]]) -> str:
    return "".join(item.get("plain_text", "") for item in rich_text or [])


def parse_block(raw: Dict[str, Any]) -> Block:
    """Turn a Notion block object into one of the known block kinds."""
    block_id = raw.get("id", "")
    kind = raw.get("type", "")
    payload = raw.get(kind) or {}
    has_children = bool(raw.get("has_children"))

    if kind == "to_do":
        return TodoBlock(block_id, plain_text(payload.get("rich_text")), bool(payload.get("checked")), has_children)
    if kind == "child_page":
        return ChildPageBlock(block_id, payload.get("title", ""))
    if kind == "child_database":
        return ChildDatabaseBlock(block_id, payload.get("title", ""))
    if kind == "table_row":
        cells = [plain_text(cell) for cell in payload.get("cells", [])]
        return TextBlock(block_id, kind, " | ".join(cells), has_children)
    if kind in TEXT_PREFIXES:
        return TextBlock(block_id, kind, plain_text(payload.get("rich_text")), has_children)
    return UnsupportedBlock(block_id, kind, has_children)


def render_block(block: Block) -> str:
    """Plain-text rendering of a single block; empty string when there is nothing to show."""
    if isinstance(block, TextBlock):
        return f"{TEXT_PREFIXES.get(block.kind, '')}{block.text}" if block.text.strip() else ""
    if isinstance(block, TodoBlock):
        return f"[{'x' if block.checked else ' '}] {block.text}"
    if isinstance(block, ChildPageBlock):
        return f"[하위 페이지] {block.title}"
    if isinstance(block, ChildDatabaseBlock):
        return f"[데이터베이스] {block.title}"
    if isinstance(block, UnsupportedBlock):
        return ""
    raise TypeError(f"Unknown block type: {type(block).__name__}")


def block_has_children(block: Block) -> bool:
    if isinstance(block, (TextBlock, TodoBlock, UnsupportedBlock)):
        return block.has_children
    return False


def page_title(page: Dict[str, Any]) -> str:
    """Title of a page or database row, whichever property carries it."""
    for prop in (page.get("properties") or {}).values():
        if prop.get("type") == "title":
            title = plain_text(prop.get("title"))
            if title:
                return title
    title = plain_text(page.get("title"))
    return title or "(제목 없음)"


def _is_rate_limited(exc: BaseException) -> bool:
    return isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code == 429


# ---- HTTP client ----------------------------------------------------------


class NotionClient:
    """Thin async wrapper over the Notion REST API."""

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._settings = settings
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "NotionClient":
        token = self._settings.notion_api_key.get_secret_value() if self._settings.notion_api_key else ""
        self._client = httpx.AsyncClient(
            base_url=NOTION_BASE_URL,
            headers={
                "Authorization": f"Bearer {token}",
                "Notion-Version": NOTION_VERSION,
                "Content-Type": "application/json",
            },
            timeout=30.0,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._client:
            await self._client.aclose()

    async def request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        """Send one request, backing off only when Notion answers 429."""
        if not self._client:
            raise RuntimeError("Notion client has not been initialised")
        async for attempt in AsyncRetrying(
            retry=retry_if_exception(_is_rate_limited),
            wait=wait_exponential(multiplier=1, min=1, max=8),
            stop=stop_after_attempt(3),
            reraise=True,
        ):
            with attempt:
                response = await self._client.request(method, path, **kwargs)
                response.raise_for_status()
                return response.json()
        raise RuntimeError("Notion request failed")  # safety net

    async def search(self, object_type: str, start_cursor: Optional[str] = None, page_size: int = 100) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "filter": {"property": "object", "value": object_type},
            "sort": {"direction": "descending", "timestamp": "last_edited_time"},
            "page_size": page_size,
        }
        if start_cursor:
            body["start_cursor"] = start_cursor
        return await self.request("POST", "/search", json=body)

    async def block_children(self, block_id: str, start_cursor: Optional[str] = None) -> Dict[str, Any]:
        params: Dict[str, Any] = {"page_size": 100}
        if start_cursor:
            params["start_cursor"] = start_cursor
        return await self.request("GET", f"/blocks/{block_id}/children", params=params)

    async def page(self, page_id: str) -> Dict[str, Any]:
        return await self.request("GET", f"/pages/{page_id}")

    async def comments(self, block_id: str) -> Dict[str, Any]:
        return await self.request("GET", "/comments", params={"block_id": block_id, "page_size": 100})

    async def user(self, user_id: str) -> Dict[str, Any]:
        return await self.request("GET", f"/users/{user_id}")

    async def query_database(self, database_id: str, since: datetime, page_size: int = DATABASE_ROW_LIMIT) -> Dict[str, Any]:
        body = {
            "filter": {
                "timestamp": "last_edited_time",
                "last_edited_time": {"on_or_after": since.isoformat()},
            },
            "sorts": [{"timestamp": "last_edited_time", "direction": "descending"}],
            "page_size": page_size,
        }
        return await self.request("POST", f"/databases/{database_id}/query", json=body)


# ---- Collector ------------------------------------------------------------


class DocumentsCollector:
    """One collection run. Holds the run's stats, dedup map and user-name cache."""

    def __init__(
        self,
        client: NotionClient,
        settings: Settings,
        *,
        since: datetime,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        self._client = client
        self._settings = settings
        self._since = since
        self._clock = clock
        self._sleep = sleep
        self._started = clock()
        self._pages: Dict[str, DocumentPage] = {}
        self._user_names: Dict[str, str] = {}
        self.stats = DocumentStats()

    def expired(self) -> bool:
        if self.stats.timed_out:
            return True
        if self._clock() - self._started > self._settings.notion_time_budget_seconds:
            self.stats.timed_out = True
            LOGGER.warning("documents.time_budget_exceeded", pages=len(self._pages))
        return self.stats.timed_out

    def _is_recent(self, page: Dict[str, Any]) -> bool:
        edited = parse_timestamp(page.get("last_edited_time"))
        return edited is not None and edited >= self._since

    async def run(self) -> Tuple[List[DocumentPage], DocumentStats]:
        phases = (
            ("search", self._from_search),
            ("traversal", self._from_traversal),
            ("database", self._from_databases),
        )
        for name, phase in phases:
            if self.expired():
                LOGGER.info("documents.phase_skipped", phase=name)
                continue
            try:
                await phase()
            except Exception as exc:  # noqa: BLE001
                self.stats.skipped += 1
                LOGGER.warning("documents.phase_failed", phase=name, error=str(exc))
        return self.finish()

    def finish(self) -> Tuple[List[DocumentPage], DocumentStats]:
        pages = sorted(self._pages.values(), key=lambda page: page.last_edited_time, reverse=True)[:MAX_PAGES]
        self.stats.elapsed_seconds = round(self._clock() - self._started, 2)
        return pages, self.stats

    # -- strategy 1: search ---------------------------------------------

    async def _from_search(self) -> None:
        candidates: List[Dict[str, Any]] = []
        cursor: Optional[str] = None
        while len(candidates) < MAX_PAGES:
            response = await self._client.search("page", start_cursor=cursor)
            results = response.get("results", [])
            recent = [page for page in results if self._is_recent(page)]
            candidates.extend(recent)
            if len(recent) < len(results) or not response.get("has_more"):
                break
            cursor = response.get("next_cursor")
            if self.expired():
                return

        candidates = [page for page in candidates[:MAX_PAGES] if page.get("id") not in self._pages]
        for offset in range(0, len(candidates), SEARCH_BATCH_SIZE):
            if self.expired():
                return
            batch = candidates[offset:offset + SEARCH_BATCH_SIZE]
            built = await asyncio.gather(*(self._safe_build(page, 0, "search") for page in batch))
            for document in built:
                if document is not None:
                    self._add(document)
                    self.stats.search_pages += 1

    # -- strategy 2: traversal ------------------------------------------

    async def _from_traversal(self) -> None:
        for root_id in self._settings.root_page_ids:
            if self.expired():
                return
            try:
                root = await self._client.page(root_id)
            except Exception as exc:  # noqa: BLE001
                self.stats.skipped += 1
                LOGGER.warning("documents.root_failed", page_id=root_id, error=str(exc))
                continue
            await self._visit(root, depth=0)

    async def _visit(self, page: Dict[str, Any], depth: int) -> None:
        page_id = page.get("id", "")
        if self._is_recent(page) and page_id not in self._pages:
            document = await self._safe_build(page, depth, "traversal")
            if document is not None:
                self._add(document)
                self.stats.traversal_pages += 1

        if depth >= MAX_PAGE_DEPTH:
            return

        for child in await self._child_pages(page_id):
            if self.expired():
                return
            try:
                child_page = await self._client.page(child.block_id)
            except Exception as exc:  # noqa: BLE001
                self.stats.skipped += 1
                LOGGER.warning("documents.child_failed", page_id=child.block_id, error=str(exc))
                continue
            await self._visit(child_page, depth + 1)

    async def _child_pages(self, page_id: str) -> List[ChildPageBlock]:
        try:
            blocks = await self._list_blocks(page_id)
        except Exception as exc:  # noqa: BLE001
            self.stats.skipped += 1
            LOGGER.warning("documents.children_failed", page_id=page_id, error=str(exc))
            return []
        return [block for block in blocks if isinstance(block, ChildPageBlock)]

    # -- strategy 3: databases ------------------------------------------

    async def _from_databases(self) -> None:
        response = await self._client.search("database", page_size=DATABASE_ROW_LIMIT)
        databases = response.get("results", [])
        for index, database in enumerate(databases):
            if self.expired():
                return
            if index:
                await self._sleep(self._settings.notion_request_delay_seconds)
            try:
                rows = (await self._client.query_database(database["id"], self._since)).get("results", [])
            except Exception as exc:  # noqa: BLE001
                self.stats.skipped += 1
                LOGGER.warning("documents.database_failed", database_id=database.get("id"), error=str(exc))
                continue
            for row in rows:
                if self.expired():
                    return
                if row.get("id") in self._pages:
                    continue
                document = await self._safe_build(row, 0, "database")
                if document is not None:
                    self._add(document)
                    self.stats.database_pages += 1

    # -- page content ---------------------------------------------------

    def _add(self, document: DocumentPage) -> None:
        self._pages.setdefault(document.page_id, document)

    async def _safe_build(self, page: Dict[str, Any], depth: int, source: str) -> Optional[DocumentPage]:
        try:
            return await self._build_page(page, depth, source)
        except Exception as exc:  # noqa: BLE001
            self.stats.skipped += 1
            LOGGER.warning("documents.page_failed", page_id=page.get("id"), error=str(exc))
            return None

    async def _build_page(self, page: Dict[str, Any], depth: int, source: str) -> DocumentPage:
        page_id = page["id"]
        lines = await self._read_content(page_id, level=1)
        editor_id = (page.get("last_edited_by") or {}).get("id")
        return DocumentPage(
            page_id=page_id,
            title=page_title(page),
            body_text=truncate("\n".join(lines), self._settings.notion_page_char_limit),
            last_edited_time=page.get("last_edited_time", ""),
            last_edited_by=await self._user_name(editor_id) if editor_id else UNKNOWN_USER,
            comments=await self._comments(page_id),
            depth=depth,
            source_method=source,
            url=page.get("url"),
        )

    async def _list_blocks(self, block_id: str) -> List[Block]:
        blocks: List[Block] = []
        cursor: Optional[str] = None
        while True:
            response = await self._client.block_children(block_id, start_cursor=cursor)
            blocks.extend(parse_block(raw) for raw in response.get("results", []))
            if not response.get("has_more"):
                return blocks
            cursor = response.get("next_cursor")

    async def _read_content(self, block_id: str, level: int) -> List[str]:
        """Rendered lines of a block tree, indented by depth, down to MAX_BLOCK_DEPTH."""
        try:
            blocks = await self._list_blocks(block_id)
        except Exception as exc:  # noqa: BLE001
            self.stats.skipped += 1
            LOGGER.warning("documents.blocks_failed", block_id=block_id, error=str(exc))
            return []

        lines: List[str] = []
        indent = "  " * (level - 1)
        for block in blocks:
            self.stats.blocks_read += 1
            rendered = render_block(block)
            if rendered:
                lines.append(indent + rendered)
            if block_has_children(block) and level < MAX_BLOCK_DEPTH:
                lines.extend(await self._read_content(block.block_id, level + 1))
        return lines

    async def _comments(self, page_id: str) -> List[DocumentComment]:
        try:
            results = (await self._client.comments(page_id)).get("results", [])
        except Exception as exc:  # noqa: BLE001
            self.stats.skipped += 1
            LOGGER.debug("documents.comments_failed", page_id=page_id, error=str(exc))
            return []

        comments: List[DocumentComment] = []
        for raw in results:
            text = plain_text(raw.get("rich_text")).strip()
            if not text:
                continue
            author_id = (raw.get("created_by") or {}).get("id")
            author = await self._user_name(author_id) if author_id else UNKNOWN_USER
            comments.append(DocumentComment(author=author, text=text))
        self.stats.comments_read += len(comments)
        return comments

    async def _user_name(self, user_id: str) -> str:
        if user_id in self._user_names:
            return self._user_names[user_id]
        try:
            name = (await self._client.user(user_id)).get("name") or UNKNOWN_USER
        except Exception as exc:  # noqa: BLE001
            LOGGER.debug("documents.user_failed", user_id=user_id, error=str(exc))
            name = UNKNOWN_USER
        self._user_names[user_id] = name
        return name


async def collect_documents(
    settings: Settings,
    days: int,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    now: Optional[datetime] = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Any] = asyncio.sleep,
) -> Tuple[List[DocumentPage], DocumentStats]:
    """Recently edited Notion pages, newest first, at most 40."""
    if settings.notion_api_key is None:
        LOGGER.info("documents.skipped", reason="notion key not configured")
        return [], DocumentStats()

    since = (now or datetime.now(tz=timezone.utc)) - timedelta(days=days)
    LOGGER.info("documents.fetch.start", since=since.isoformat(), roots=len(settings.root_page_ids))

    async with NotionClient(settings, transport=transport) as client:
        collector = DocumentsCollector(client, settings, since=since, clock=clock, sleep=sleep)
        pages, stats = await collector.run()

    LOGGER.info("documents.fetch.success", pages=len(pages), **stats.model_dump())
    return pages, stats
