# gateway/pipelines/drugs.py
"""
ChEMBL drug lookups.

`?target=EGFR` resolves a free-text target (usually a gene symbol) to one
ChEMBL target, then lists the distinct molecules acting on it via the
mechanism endpoint. `?q=imatinib` is a plain molecule search.

Target resolution tiers, best first (earlier upstream position breaks ties):

    4  Homo sapiens, exact component synonym, SINGLE PROTEIN
    3  Homo sapiens, exact component synonym
    2  Homo sapiens, SINGLE PROTEIN
    1  Homo sapiens
    0  anything else (so the first upstream hit wins when nothing matches)
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Hashable, List, Mapping, Optional, Set

import httpx

from ..clients.sources import fetch_source_json
from ..config import DRUGS_OVERFETCH_FACTOR, PipelineCaps
from ..errors import MalformedPayload, ParameterError
from ..models import DrugMechanism, Molecule
from ..utils.normalize import to_float, to_int
from ..utils.validation import coerce_limit, optional_str
from .base import (
    Failure, FailureKind, Pipeline, PipelineResult, ResolutionCandidate,
    ResolveThenAggregatePipeline, SimplePipeline, Success,
)

log = logging.getLogger("gateway.pipelines.drugs")

ORGANISM = "Homo sapiens"
PREFERRED_TARGET_TYPE = "SINGLE PROTEIN"
TARGET_SEARCH_SIZE = 15
PHASE_LABELS = {0: "Unknown", 1: "Phase I", 2: "Phase II", 3: "Phase III", 4: "Approved"}


def compound_url(chembl_id: str) -> str:
    return f"https://www.ebi.ac.uk/chembl/compound_report_card/{chembl_id}/"


def phase_label(max_phase: Optional[float]) -> Optional[str]:
    if max_phase is None:
        return None
    if max_phase == 0.5:
        return "Early Phase I"
    return PHASE_LABELS.get(int(max_phase)) if float(max_phase).is_integer() else f"Phase {max_phase:g}"


def _flag(value: Any) -> Optional[bool]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "y"}
    return bool(value)


def _records(payload: Any, key: str) -> List[Dict[str, Any]]:
    if not isinstance(payload, dict):
        raise MalformedPayload("chembl", f"{key} response is not an object")
    rows = payload.get(key)
    if rows is None:
        return []
    if not isinstance(rows, list):
        raise MalformedPayload("chembl", f"{key} is not a list")
    return [r for r in rows if isinstance(r, dict)]


# ============================================================================
# Target → mechanisms (resolve then aggregate)
# ============================================================================
def target_synonyms(target: Mapping[str, Any]) -> Set[str]:
    out: Set[str] = set()
    for comp in target.get("target_components") or []:
        for syn in (comp or {}).get("target_component_synonyms") or []:
            value = (syn or {}).get("component_synonym")
            if value:
                out.add(str(value).strip().upper())
    return out


def score_target(target: Dict[str, Any], key: str) -> ResolutionCandidate:
    in_organism = target.get("organism") == ORGANISM
    preferred = target.get("target_type") == PREFERRED_TARGET_TYPE
    synonym = key.strip().upper() in target_synonyms(target)
    if in_organism and synonym:
        score = 4 if preferred else 3
    elif in_organism:
        score = 2 if preferred else 1
    else:
        score = 0
    return ResolutionCandidate(entity=target, score=score, matched_synonym=synonym and in_organism)


def mechanism_to_drug(m: Mapping[str, Any], names: Mapping[str, Optional[str]]) -> DrugMechanism:
    cid = m["molecule_chembl_id"]
    return DrugMechanism(
        name=m.get("molecule_name") or names.get(cid),
        chembl_id=cid,
        mechanism=m.get("mechanism_of_action"),
        action_type=m.get("action_type"),
        max_phase=to_float(m.get("max_phase")),
        url=compound_url(cid),
    )


class TargetDrugsPipeline(ResolveThenAggregatePipeline):
    name = "drugs"
    items_key = "drugs"
    example = "/api/drugs?target=EGFR&limit=5"

    def __init__(self, caps: PipelineCaps, overfetch_factor: int = DRUGS_OVERFETCH_FACTOR):
        super().__init__(caps)
        self.overfetch_factor = overfetch_factor

    async def search(self, http: httpx.AsyncClient, query: Dict[str, Any]) -> List[Dict[str, Any]]:
        payload = await fetch_source_json(http, "chembl", "/target/search.json", params={
            "q": query["target"],
            "limit": TARGET_SEARCH_SIZE,
        })
        return _records(payload, "targets")

    def score(self, entity: Dict[str, Any], query: Dict[str, Any]) -> ResolutionCandidate:
        return score_target(entity, query["target"])

    def not_found(self, query: Dict[str, Any]) -> Failure:
        return Failure(
            FailureKind.NOT_FOUND,
            f'Target "{query["target"]}" not found in ChEMBL',
            {"suggestion": "Try a gene symbol (e.g., EGFR, BRCA1, TP53, VEGFR)"},
        )

    async def fetch_dependents(
        self, http: httpx.AsyncClient, chosen: ResolutionCandidate, query: Dict[str, Any], fetch_limit: int
    ) -> List[Dict[str, Any]]:
        payload = await fetch_source_json(http, "chembl", "/mechanism.json", params={
            "target_chembl_id": chosen.entity["target_chembl_id"],
            "limit": fetch_limit,
        })
        return _records(payload, "mechanisms")

    def dedup_key(self, record: Dict[str, Any]) -> Optional[Hashable]:
        return record.get("molecule_chembl_id") or None

    async def denormalize(self, http: httpx.AsyncClient, records: List[Dict[str, Any]]) -> Dict[str, Optional[str]]:
        missing = [r["molecule_chembl_id"] for r in records if not r.get("molecule_name")]
        if not missing:
            return {}
        payload = await fetch_source_json(http, "chembl", f"/molecule/set/{';'.join(missing)}.json")
        names: Dict[str, Optional[str]] = {}
        for mol in _records(payload, "molecules"):
            cid = mol.get("molecule_chembl_id")
            if cid:
                names[cid] = mol.get("pref_name")
        if len(names) < len(missing):
            log.info("molecule set answered %d of %d names", len(names), len(missing))
        return names

    def build(
        self,
        chosen: ResolutionCandidate,
        records: List[Dict[str, Any]],
        names: Dict[str, Optional[str]],
        query: Dict[str, Any],
    ) -> Success:
        target = chosen.entity
        return self.success(
            [mechanism_to_drug(m, names) for m in records],
            target=query["target"],
            target_name=target.get("pref_name"),
            target_type=target.get("target_type"),
            organism=target.get("organism"),
            target_chembl_id=target.get("target_chembl_id"),
            matched_synonym=chosen.matched_synonym,
        )


# ============================================================================
# Molecule search (simple)
# ============================================================================
def normalize_molecule(m: Mapping[str, Any]) -> Molecule:
    props = m.get("molecule_properties") or {}
    phase = to_float(m.get("max_phase"))
    cid = m["molecule_chembl_id"]
    return Molecule(
        chembl_id=cid,
        name=m.get("pref_name"),
        type=m.get("molecule_type"),
        max_phase=phase,
        phase_label=phase_label(phase),
        first_approval=to_int(m.get("first_approval")),
        oral=_flag(m.get("oral")),
        parenteral=_flag(m.get("parenteral")),
        topical=_flag(m.get("topical")),
        natural_product=_flag(m.get("natural_product")),
        molecular_formula=props.get("full_molformula") or None,
        molecular_weight=to_float(props.get("full_mw")),
        alogp=to_float(props.get("alogp")),
        hba=to_int(props.get("hba")),
        hbd=to_int(props.get("hbd")),
        psa=to_float(props.get("psa")),
        num_ro5_violations=to_int(props.get("num_ro5_violations")),
        url=compound_url(cid),
    )


class MoleculeSearchPipeline(SimplePipeline):
    name = "drugs"
    items_key = "molecules"
    example = "/api/drugs?q=imatinib&limit=3"

    async def fetch(self, http: httpx.AsyncClient, query: Dict[str, Any]) -> Any:
        return await fetch_source_json(http, "chembl", "/molecule/search.json", params={
            "q": query["q"],
            "limit": query["limit"],
        })

    def normalize(self, payload: Any, query: Dict[str, Any]) -> Success:
        molecules = [normalize_molecule(m) for m in _records(payload, "molecules") if m.get("molecule_chembl_id")]
        return self.success(molecules, query=query["q"])


# ============================================================================
# Capability entry point
# ============================================================================
class DrugsPipeline(Pipeline):
    name = "drugs"
    example = "/api/drugs?target=EGFR&limit=5"
    examples = (
        "/api/drugs?q=aspirin",
        "/api/drugs?q=imatinib&limit=3",
        "/api/drugs?target=EGFR",
        "/api/drugs?target=BRCA1&limit=5",
    )

    def __init__(self, caps: PipelineCaps, overfetch_factor: int = DRUGS_OVERFETCH_FACTOR):
        super().__init__(caps)
        self.by_target = TargetDrugsPipeline(caps, overfetch_factor)
        self.by_name = MoleculeSearchPipeline(caps)

    def parse(self, params: Mapping[str, str]) -> Dict[str, Any]:
        q = optional_str(params, "q")
        target = optional_str(params, "target")
        if not q and not target:
            raise ParameterError(
                "Missing parameter. Use ?q=drug_name or ?target=gene_name",
                example=self.example,
                examples=self.examples,
            )
        return {
            "q": q,
            "target": target,
            "limit": coerce_limit(params, "limit", default=self.caps.default_limit, cap=self.caps.max_limit, example=self.example),
        }

    async def run(self, http: httpx.AsyncClient, query: Dict[str, Any]) -> PipelineResult:
        # target takes precedence when both are given
        if query["target"]:
            return await self.by_target.run(http, query)
        return await self.by_name.run(http, query)
