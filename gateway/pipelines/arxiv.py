# gateway/pipelines/arxiv.py
from __future__ import annotations

import xml.etree.ElementTree as ET
from typing import Any, Dict, List, Mapping, Optional

import httpx

from ..clients.sources import fetch_source_text
from ..errors import MalformedPayload
from ..models import Paper
from ..utils.normalize import squash, truncate
from ..utils.validation import coerce_choice, coerce_limit, optional_str, require_str
from .base import SimplePipeline, Success
from .select import pick_first

NS = {"atom": "http://www.w3.org/2005/Atom"}
SORTS = ("submittedDate", "relevance", "lastUpdatedDate")
MAX_AUTHORS = 5


def short_id(entry_id: Optional[str]) -> Optional[str]:
    if not entry_id or "/abs/" not in entry_id:
        return None
    return entry_id.split("/abs/", 1)[1].strip() or None


def _find(entry: ET.Element, tag: str) -> Optional[str]:
    node = entry.find(f"atom:{tag}", NS)
    return squash(node.text) if node is not None and node.text else None


def _pdf_link(entry: ET.Element) -> Optional[str]:
    link = pick_first(
        entry.findall("atom:link", NS),
        lambda l: l.get("title") == "pdf" or l.get("type") == "application/pdf",
    )
    return link.get("href") if link is not None else None


def parse_feed(xml: str, text_max: int) -> List[Paper]:
    try:
        root = ET.fromstring(xml)
    except ET.ParseError as e:
        raise MalformedPayload("arxiv", f"Atom feed: {e}") from e
    if root.tag != f"{{{NS['atom']}}}feed":
        raise MalformedPayload("arxiv", f"unexpected root element {root.tag}")

    papers: List[Paper] = []
    for entry in root.findall("atom:entry", NS):
        pid = short_id(_find(entry, "id"))
        if not pid:
            # arXiv reports query errors as a pseudo-entry with a non-/abs/ id
            continue
        abstract, cut = truncate(_find(entry, "summary"), text_max)
        authors = [squash(n.text) for n in entry.findall("atom:author/atom:name", NS) if n.text]
        papers.append(Paper(
            id=pid,
            title=_find(entry, "title"),
            authors=[a for a in authors if a][:MAX_AUTHORS],
            abstract=abstract,
            truncated=cut,
            categories=[c.get("term") for c in entry.findall("atom:category", NS) if c.get("term")],
            published=_find(entry, "published"),
            updated=_find(entry, "updated"),
            url=f"https://arxiv.org/abs/{pid}",
            pdf=_pdf_link(entry) or f"https://arxiv.org/pdf/{pid}",
        ))
    return papers


class ArxivPipeline(SimplePipeline):
    name = "arxiv"
    items_key = "papers"
    example = "/api/arxiv?q=large+language+models&limit=5"

    def parse(self, params: Mapping[str, str]) -> Dict[str, Any]:
        return {
            "q": require_str(params, "q", example=self.example),
            "limit": coerce_limit(params, "limit", default=self.caps.default_limit, cap=self.caps.max_limit, example=self.example),
            "sort": coerce_choice(params, "sort", SORTS, "submittedDate", example=self.example),
            "cat": optional_str(params, "cat"),
        }

    async def fetch(self, http: httpx.AsyncClient, query: Dict[str, Any]) -> str:
        search = f"all:{query['q']}"
        if query["cat"]:
            search = f"cat:{query['cat']} AND {search}"
        xml, _ = await fetch_source_text(http, "arxiv", "/query", params={
            "search_query": search,
            "start": 0,
            "max_results": query["limit"],
            "sortBy": query["sort"],
            "sortOrder": "descending",
        })
        return xml

    def normalize(self, payload: str, query: Dict[str, Any]) -> Success:
        papers = parse_feed(payload, self.caps.text_max)
        return self.success(papers, query=query["q"], category=query["cat"] or "all")
