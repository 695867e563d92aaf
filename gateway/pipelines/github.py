# gateway/pipelines/github.py
from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

import httpx

from ..clients.sources import fetch_source_json
from ..errors import MalformedPayload, ParameterError
from ..models import Repository
from ..utils.normalize import to_int, truncate
from ..utils.validation import coerce_choice, coerce_limit, optional_str
from .base import SimplePipeline, Success

WINDOW_DAYS = {"daily": 1, "weekly": 7, "monthly": 30}
MAX_TOPICS = 5
_LANG_RE = re.compile(r"^[A-Za-z0-9+#.\- ]{1,40}$")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def search_query(since: str, lang: Optional[str], now: datetime) -> str:
    cutoff = (now - timedelta(days=WINDOW_DAYS[since])).date().isoformat()
    q = f"created:>{cutoff}"
    if lang:
        q += f" language:{lang}"
    return q


def normalize_repos(payload: Any, text_max: int) -> List[Repository]:
    if not isinstance(payload, dict) or not isinstance(payload.get("items"), list):
        message = payload.get("message") if isinstance(payload, dict) else None
        raise MalformedPayload("github", message or "search response lacks items")
    repos: List[Repository] = []
    for r in payload["items"]:
        if not isinstance(r, dict) or not r.get("full_name"):
            continue
        full_name = r["full_name"]
        description, cut = truncate(r.get("description"), text_max)
        repos.append(Repository(
            name=full_name,
            description=description,
            truncated=cut,
            url=r.get("html_url") or f"https://github.com/{full_name}",
            stars=to_int(r.get("stargazers_count")) or 0,
            forks=to_int(r.get("forks_count")) or 0,
            language=r.get("language"),
            created=r.get("created_at"),
            topics=list(r.get("topics") or [])[:MAX_TOPICS],
        ))
    return repos


class GitHubPipeline(SimplePipeline):
    name = "github"
    items_key = "repos"
    example = "/api/github?lang=python&since=weekly&limit=10"

    def __init__(self, caps, clock: Callable[[], datetime] = _utc_now):
        super().__init__(caps)
        self._clock = clock

    def parse(self, params: Mapping[str, str]) -> Dict[str, Any]:
        lang = optional_str(params, "lang")
        if lang and not _LANG_RE.match(lang):
            raise ParameterError(f"Invalid lang: {lang!r}", example=self.example)
        return {
            "lang": lang,
            "since": coerce_choice(params, "since", tuple(WINDOW_DAYS), "daily", example=self.example),
            "limit": coerce_limit(params, "limit", default=self.caps.default_limit, cap=self.caps.max_limit, example=self.example),
        }

    async def fetch(self, http: httpx.AsyncClient, query: Dict[str, Any]) -> Any:
        return await fetch_source_json(http, "github", "/search/repositories", params={
            "q": search_query(query["since"], query["lang"], self._clock()),
            "sort": "stars",
            "order": "desc",
            "per_page": query["limit"],
        })

    def normalize(self, payload: Any, query: Dict[str, Any]) -> Success:
        repos = normalize_repos(payload, self.caps.text_max)
        return self.success(
            repos,
            language=query["lang"] or "all",
            since=query["since"],
            total_found=to_int(payload.get("total_count")) or 0,
        )
