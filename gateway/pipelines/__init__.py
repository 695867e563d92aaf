# gateway/pipelines/__init__.py
from __future__ import annotations

from typing import Dict, List, Mapping, Optional

from ..config import CAPS, PipelineCaps
from .arxiv import ArxivPipeline
from .base import Failure, FailureKind, Pipeline, PipelineResult, Success
from .crypto import CryptoPipeline
from .drugs import DrugsPipeline
from .extract import ExtractPipeline
from .github import GitHubPipeline
from .hn import HackerNewsPipeline
from .pubmed import PubMedPipeline

PIPELINE_CLASSES = {
    "hn": HackerNewsPipeline,
    "pubmed": PubMedPipeline,
    "arxiv": ArxivPipeline,
    "crypto": CryptoPipeline,
    "github": GitHubPipeline,
    "extract": ExtractPipeline,
    "drugs": DrugsPipeline,
}

DESCRIPTIONS = {
    "hn": "Hacker News top stories filtered by topic",
    "pubmed": "PubMed article search with abstracts",
    "arxiv": "arXiv paper search",
    "crypto": "Crypto prices (CoinGecko, CoinCap fallback)",
    "github": "Trending GitHub repositories",
    "extract": "Readable text from any web page",
    "drugs": "ChEMBL molecule search and drugs by target",
}


def build_pipelines(caps: Optional[Mapping[str, PipelineCaps]] = None) -> Dict[str, Pipeline]:
    caps = caps or CAPS
    return {name: cls(caps[name]) for name, cls in PIPELINE_CLASSES.items()}


def endpoint_paths(pipelines: Mapping[str, Pipeline]) -> List[str]:
    return [f"/api/{name}" for name in pipelines]


def endpoint_catalog(pipelines: Mapping[str, Pipeline]) -> Dict[str, Dict[str, str]]:
    return {
        f"/api/{name}": {"description": DESCRIPTIONS.get(name, ""), "example": p.example}
        for name, p in pipelines.items()
    }


__all__ = [
    "Failure",
    "FailureKind",
    "Pipeline",
    "PipelineResult",
    "Success",
    "build_pipelines",
    "endpoint_catalog",
    "endpoint_paths",
]
