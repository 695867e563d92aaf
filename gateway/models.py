# gateway/models.py
"""Stable output schemas, one per data domain. Upstream field names never leak past these."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class Story(BaseModel):
    id: int
    title: str
    url: str
    score: int = 0
    comments: int = 0
    time: Optional[str] = None
    hn_url: str


class Article(BaseModel):
    pmid: str
    title: Optional[str] = None
    abstract: Optional[str] = None
    truncated: bool = False
    journal: Optional[str] = None
    year: Optional[str] = None
    url: str


class Paper(BaseModel):
    id: str
    title: Optional[str] = None
    authors: List[str] = Field(default_factory=list)
    abstract: Optional[str] = None
    truncated: bool = False
    categories: List[str] = Field(default_factory=list)
    published: Optional[str] = None
    updated: Optional[str] = None
    url: str
    pdf: str


class PricedAsset(BaseModel):
    id: str
    symbol: Optional[str] = None
    name: Optional[str] = None
    price_usd: Optional[float] = None
    change_24h: Optional[float] = None
    market_cap: Optional[float] = None
    volume_24h: Optional[float] = None
    rank: Optional[int] = None


class Repository(BaseModel):
    name: str
    description: Optional[str] = None
    truncated: bool = False
    url: str
    stars: int = 0
    forks: int = 0
    language: Optional[str] = None
    created: Optional[str] = None
    topics: List[str] = Field(default_factory=list)


class ExtractedPage(BaseModel):
    url: str
    type: str  # "html" | "json" | "text"
    title: Optional[str] = None
    description: Optional[str] = None
    content: str = ""
    length: int = 0
    truncated: bool = False


class Molecule(BaseModel):
    chembl_id: str
    name: Optional[str] = None
    type: Optional[str] = None
    max_phase: Optional[float] = None
    phase_label: Optional[str] = None
    first_approval: Optional[int] = None
    oral: Optional[bool] = None
    parenteral: Optional[bool] = None
    topical: Optional[bool] = None
    natural_product: Optional[bool] = None
    molecular_formula: Optional[str] = None
    molecular_weight: Optional[float] = None
    alogp: Optional[float] = None
    hba: Optional[int] = None
    hbd: Optional[int] = None
    psa: Optional[float] = None
    num_ro5_violations: Optional[int] = None
    url: str


class DrugMechanism(BaseModel):
    name: Optional[str] = None
    chembl_id: str
    mechanism: Optional[str] = None
    action_type: Optional[str] = None
    max_phase: Optional[float] = None
    url: str
