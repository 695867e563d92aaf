# gateway/pipelines/pubmed.py
from __future__ import annotations

import xml.etree.ElementTree as ET
from typing import Any, Dict, List, Mapping, Optional, Tuple

import httpx

from ..clients.sources import fetch_source_json, fetch_source_text
from ..errors import MalformedPayload
from ..models import Article
from ..utils.normalize import squash, to_int, truncate
from ..utils.validation import coerce_choice, coerce_limit, require_str
from .base import SimplePipeline, Success

# caller-facing sort -> esearch sort
SORTS = {"date": "pub_date", "relevance": "relevance"}


def article_url(pmid: str) -> str:
    return f"https://pubmed.ncbi.nlm.nih.gov/{pmid}/"


def _text(node: Optional[ET.Element]) -> Optional[str]:
    if node is None:
        return None
    return squash("".join(node.itertext()))


def search_ids(payload: Any) -> Tuple[List[str], int]:
    if not isinstance(payload, dict) or not isinstance(payload.get("esearchresult"), dict):
        raise MalformedPayload("ncbi", "esearch response lacks esearchresult")
    result = payload["esearchresult"]
    ids = [str(i) for i in (result.get("idlist") or [])]
    return ids, to_int(result.get("count")) or 0


def parse_articles(xml: str, text_max: int) -> List[Article]:
    try:
        root = ET.fromstring(xml)
    except ET.ParseError as e:
        raise MalformedPayload("ncbi", f"efetch XML: {e}") from e

    out: List[Article] = []
    for art in root.iter("PubmedArticle"):
        pmid = _text(art.find("MedlineCitation/PMID"))
        if not pmid:
            continue
        parts = [_text(n) for n in art.findall(".//Abstract/AbstractText")]
        abstract, cut = truncate(" ".join(p for p in parts if p) or None, text_max)
        pub = art.find(".//Journal/JournalIssue/PubDate")
        year = _text(pub.find("Year")) if pub is not None else None
        if not year and pub is not None:
            medline = _text(pub.find("MedlineDate"))
            year = medline[:4] if medline else None
        out.append(Article(
            pmid=pmid,
            title=_text(art.find(".//ArticleTitle")),
            abstract=abstract,
            truncated=cut,
            journal=_text(art.find(".//Journal/Title")),
            year=year,
            url=article_url(pmid),
        ))
    return out


class PubMedPipeline(SimplePipeline):
    name = "pubmed"
    items_key = "articles"
    example = "/api/pubmed?q=CRISPR+cancer&limit=5"

    def parse(self, params: Mapping[str, str]) -> Dict[str, Any]:
        return {
            "q": require_str(params, "q", example=self.example),
            "limit": coerce_limit(params, "limit", default=self.caps.default_limit, cap=self.caps.max_limit, example=self.example),
            "sort": coerce_choice(params, "sort", tuple(SORTS), "date", example=self.example),
        }

    async def fetch(self, http: httpx.AsyncClient, query: Dict[str, Any]) -> Tuple[List[str], int, Optional[str]]:
        search = await fetch_source_json(http, "ncbi", "/esearch.fcgi", params={
            "db": "pubmed",
            "term": query["q"],
            "retmax": query["limit"],
            "sort": SORTS[query["sort"]],
            "retmode": "json",
        })
        ids, total = search_ids(search)
        if not ids:
            return ids, total, None
        xml, _ = await fetch_source_text(http, "ncbi", "/efetch.fcgi", params={
            "db": "pubmed",
            "id": ",".join(ids),
            "rettype": "abstract",
            "retmode": "xml",
        })
        return ids, total, xml

    def normalize(self, payload: Tuple[List[str], int, Optional[str]], query: Dict[str, Any]) -> Success:
        _, total, xml = payload
        articles = parse_articles(xml, self.caps.text_max) if xml else []
        return self.success(articles, query=query["q"], total_found=total)
