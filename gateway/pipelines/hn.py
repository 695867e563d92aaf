# gateway/pipelines/hn.py
from __future__ import annotations

import re
from typing import Any, Dict, List, Mapping, Optional

import httpx

from ..clients.sources import fetch_source_json
from ..config import HN_SCAN_WINDOW
from ..errors import MalformedPayload
from ..models import Story
from ..utils.normalize import iso_from_epoch, to_int
from ..utils.validation import coerce_choice, coerce_limit
from .base import SimplePipeline, Success, gather_best_effort

TOPIC_PATTERNS: Dict[str, re.Pattern] = {
    "ai": re.compile(r"\b(ai|llm|gpt|claude|openai|anthropic|ml|machine.?learn|neural|transformer|diffusion|agent|rag|embedding|fine.?tun|gemini|mistral|llama)", re.I),
    "crypto": re.compile(r"\b(crypto|bitcoin|ethereum|web3|defi|nft|blockchain|token|solana|base\s|usdt|usdc)", re.I),
    "dev": re.compile(r"\b(rust|go|python|javascript|typescript|react|node|api|database|sql|git|docker|k8s|deploy|linux|aws)", re.I),
    "science": re.compile(r"\b(research|paper|study|journal|physics|biology|chemistry|math|quantum|genome|crispr|drug|cancer)", re.I),
    "security": re.compile(r"\b(hack|breach|vulnerability|cve|zero.?day|exploit|malware|ransomware|encrypt|auth|security)", re.I),
    "all": re.compile(r"."),
}


def item_url(story_id: Any) -> str:
    return f"https://news.ycombinator.com/item?id={story_id}"


def matches_topic(item: Mapping[str, Any], topic: str) -> bool:
    if topic == "all":
        return True
    pattern = TOPIC_PATTERNS[topic]
    return bool(pattern.search(item.get("title") or "") or pattern.search(item.get("url") or ""))


def normalize_story(item: Mapping[str, Any]) -> Story:
    sid = item["id"]
    return Story(
        id=sid,
        title=item["title"],
        url=item.get("url") or item_url(sid),
        score=to_int(item.get("score")) or 0,
        comments=to_int(item.get("descendants")) or 0,
        time=iso_from_epoch(item.get("time")),
        hn_url=item_url(sid),
    )


def select_stories(items: List[Mapping[str, Any]], topic: str, limit: int) -> List[Story]:
    usable = [
        it for it in items
        if isinstance(it, dict) and it.get("title") and it.get("id") is not None and matches_topic(it, topic)
    ]
    usable.sort(key=lambda it: to_int(it.get("score")) or 0, reverse=True)
    return [normalize_story(it) for it in usable[:limit]]


class HackerNewsPipeline(SimplePipeline):
    name = "hn"
    items_key = "stories"
    example = "/api/hn?topic=ai&limit=10"

    def __init__(self, caps, scan_window: int = HN_SCAN_WINDOW):
        super().__init__(caps)
        self.scan_window = scan_window

    def parse(self, params: Mapping[str, str]) -> Dict[str, Any]:
        return {
            "topic": coerce_choice(params, "topic", tuple(TOPIC_PATTERNS), "ai", example=self.example),
            "limit": coerce_limit(params, "limit", default=self.caps.default_limit, cap=self.caps.max_limit, example=self.example),
        }

    async def _item(self, http: httpx.AsyncClient, story_id: Any) -> Optional[Dict[str, Any]]:
        data = await fetch_source_json(http, "hn", f"/item/{story_id}.json")
        return data if isinstance(data, dict) else None

    async def fetch(self, http: httpx.AsyncClient, query: Dict[str, Any]) -> List[Dict[str, Any]]:
        ids = await fetch_source_json(http, "hn", "/topstories.json")
        if not isinstance(ids, list):
            raise MalformedPayload("hn", "topstories is not a list")
        batch = ids[: self.scan_window]
        return await gather_best_effort((self._item(http, i) for i in batch), label="hn items")

    def normalize(self, payload: Any, query: Dict[str, Any]) -> Success:
        stories = select_stories(payload, query["topic"], query["limit"])
        return self.success(stories, topic=query["topic"], available_topics=list(TOPIC_PATTERNS))
