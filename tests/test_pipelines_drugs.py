"""
Resolve-then-aggregate tests for ChEMBL target lookups, plus molecule search.
"""

import copy

import pytest

from conftest import load_json
from gateway.config import PipelineCaps
from gateway.errors import ParameterError
from gateway.pipelines.base import Failure, FailureKind, Success
from gateway.pipelines.drugs import (
    DrugsPipeline, TargetDrugsPipeline, normalize_molecule, phase_label, score_target,
)

CHEMBL = "www.ebi.ac.uk"
TARGET_SEARCH = "/chembl/api/data/target/search.json"
MECHANISMS = "/chembl/api/data/mechanism.json"
MOLECULE_SET = "/chembl/api/data/molecule/set/*"
MOLECULE_SEARCH = "/chembl/api/data/molecule/search.json"


@pytest.fixture
def pipeline():
    return DrugsPipeline(PipelineCaps(5, 10))


class TestResolution:
    def test_scores(self):
        targets = load_json("chembl_targets.json")["targets"]
        scores = [score_target(t, "egfr").score for t in targets]
        # mouse synonym, human family, human single protein, human synonym + single protein
        assert scores == [0, 1, 2, 4]

    @pytest.mark.parametrize("order", [[0, 1, 2, 3], [3, 2, 1, 0], [2, 3, 0, 1]])
    def test_exact_synonym_wins_regardless_of_order(self, order):
        targets = load_json("chembl_targets.json")["targets"]
        shuffled = [targets[i] for i in order]
        chosen = TargetDrugsPipeline(PipelineCaps(5, 10)).resolve(shuffled, {"target": "EGFR"})
        assert chosen.entity["target_chembl_id"] == "CHEMBL203"
        assert chosen.matched_synonym is True

    def test_no_organism_match_takes_first(self):
        targets = [
            {"target_chembl_id": "A", "organism": "Rattus norvegicus"},
            {"target_chembl_id": "B", "organism": "Mus musculus"},
        ]
        chosen = TargetDrugsPipeline(PipelineCaps(5, 10)).resolve(targets, {"target": "X"})
        assert chosen.entity["target_chembl_id"] == "A"


class TestTargetDrugs:
    def _routes(self, upstreams, molecule_set_status=200):
        upstreams.add(CHEMBL, TARGET_SEARCH, json_body=load_json("chembl_targets.json"))
        upstreams.add(CHEMBL, MECHANISMS, json_body=load_json("chembl_mechanisms.json"))
        upstreams.add(CHEMBL, MOLECULE_SET, status=molecule_set_status, json_body=load_json("chembl_molecule_set.json"))

    @pytest.mark.asyncio
    async def test_dedupes_and_denormalizes(self, upstreams, pipeline):
        self._routes(upstreams)
        async with upstreams.client() as http:
            result = await pipeline.run(http, pipeline.parse({"target": "EGFR", "limit": "3"}))

        assert isinstance(result, Success)
        assert result.items_key == "drugs"
        assert [d.chembl_id for d in result.items] == ["CHEMBL939", "CHEMBL553", "CHEMBL1201827"]
        assert [d.name for d in result.items] == ["GEFITINIB", "ERLOTINIB", "CETUXIMAB"]
        assert result.items[0].url == "https://www.ebi.ac.uk/chembl/compound_report_card/CHEMBL939/"
        assert result.meta["target_chembl_id"] == "CHEMBL203"
        assert result.meta["organism"] == "Homo sapiens"

        mech_call = next(r for r in upstreams.calls if r.url.path == MECHANISMS)
        assert mech_call.url.params["target_chembl_id"] == "CHEMBL203"
        assert mech_call.url.params["limit"] == "9"
        # only the kept records lacking a name are looked up, in one request
        set_calls = [r.url.path for r in upstreams.calls if r.url.path.startswith(MOLECULE_SET[:-1])]
        assert set_calls == ["/chembl/api/data/molecule/set/CHEMBL939;CHEMBL1201827.json"]

    @pytest.mark.asyncio
    async def test_partial_name_lookup_leaves_nulls(self, upstreams, pipeline):
        self._routes(upstreams)
        async with upstreams.client() as http:
            result = await pipeline.run(http, pipeline.parse({"target": "EGFR", "limit": "10"}))
        names = {d.chembl_id: d.name for d in result.items}
        assert names["CHEMBL3353410"] is None
        assert len(result.items) == 4

    @pytest.mark.asyncio
    async def test_name_lookup_failure_never_aborts(self, upstreams, pipeline):
        self._routes(upstreams, molecule_set_status=500)
        async with upstreams.client() as http:
            result = await pipeline.run(http, pipeline.parse({"target": "EGFR", "limit": "3"}))
        assert isinstance(result, Success)
        assert [d.name for d in result.items] == [None, "ERLOTINIB", None]

    @pytest.mark.asyncio
    async def test_unknown_target(self, upstreams, pipeline):
        upstreams.add(CHEMBL, TARGET_SEARCH, json_body={"page_meta": {}, "targets": []})
        async with upstreams.client() as http:
            result = await pipeline.run(http, pipeline.parse({"target": "NOPE1"}))
        assert isinstance(result, Failure)
        assert result.kind is FailureKind.NOT_FOUND
        assert result.detail == 'Target "NOPE1" not found in ChEMBL'
        assert "suggestion" in result.extra

    @pytest.mark.asyncio
    async def test_no_mechanisms_is_empty_success(self, upstreams, pipeline):
        upstreams.add(CHEMBL, TARGET_SEARCH, json_body=load_json("chembl_targets.json"))
        upstreams.add(CHEMBL, MECHANISMS, json_body={"mechanisms": []})
        async with upstreams.client() as http:
            result = await pipeline.run(http, pipeline.parse({"target": "EGFR"}))
        assert isinstance(result, Success)
        assert result.items == []
        assert not any(r.url.path.startswith("/chembl/api/data/molecule/set/") for r in upstreams.calls)

    @pytest.mark.asyncio
    async def test_search_down(self, upstreams, pipeline):
        upstreams.add(CHEMBL, TARGET_SEARCH, error=True)
        async with upstreams.client() as http:
            result = await pipeline.run(http, pipeline.parse({"target": "EGFR"}))
        assert isinstance(result, Failure)
        assert result.kind is FailureKind.UPSTREAM_UNAVAILABLE


class TestMoleculeSearch:
    def test_phase_label(self):
        assert phase_label(4.0) == "Approved"
        assert phase_label(2) == "Phase II"
        assert phase_label(0.5) == "Early Phase I"
        assert phase_label(None) is None

    def test_normalize_molecule(self):
        raw = load_json("chembl_molecule_search.json")["molecules"]
        imatinib = normalize_molecule(raw[0])
        assert imatinib.name == "IMATINIB"
        assert imatinib.max_phase == 4.0
        assert imatinib.phase_label == "Approved"
        assert imatinib.oral is True and imatinib.topical is False
        assert imatinib.natural_product is False
        assert imatinib.molecular_weight == pytest.approx(493.62)
        assert imatinib.hba == 7

        bare = normalize_molecule(raw[1])
        assert bare.phase_label is None
        assert bare.molecular_formula is None

    @pytest.mark.asyncio
    async def test_run(self, upstreams, pipeline):
        upstreams.add(CHEMBL, MOLECULE_SEARCH, json_body=load_json("chembl_molecule_search.json"))
        async with upstreams.client() as http:
            result = await pipeline.run(http, pipeline.parse({"q": "imatinib", "limit": "3"}))
        assert isinstance(result, Success)
        assert result.items_key == "molecules"
        assert result.meta == {"query": "imatinib"}
        assert upstreams.calls[0].url.params["limit"] == "3"

    @pytest.mark.asyncio
    async def test_empty(self, upstreams, pipeline):
        upstreams.add(CHEMBL, MOLECULE_SEARCH, json_body={"molecules": []})
        async with upstreams.client() as http:
            result = await pipeline.run(http, pipeline.parse({"q": "zzz"}))
        assert isinstance(result, Success)
        assert result.items == []


def test_requires_q_or_target(pipeline):
    with pytest.raises(ParameterError) as exc:
        pipeline.parse({"limit": "3"})
    assert "?q=" in exc.value.message and "?target=" in exc.value.message


def test_fixture_not_mutated_by_scoring():
    targets = load_json("chembl_targets.json")["targets"]
    before = copy.deepcopy(targets)
    for t in targets:
        score_target(t, "EGFR")
    assert targets == before
