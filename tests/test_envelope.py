import json

from gateway.envelope import (
    Status, from_denial, from_failure, from_parameter_error, from_success, internal_error, unknown_endpoint,
)
from gateway.errors import ParameterError
from gateway.identity import CallerIdentity
from gateway.models import ExtractedPage, Story
from gateway.pipelines.base import Failure, FailureKind, Success
from gateway.quota import QuotaDecision


def _story(i):
    return Story(id=i, title=f"t{i}", url="https://x", hn_url="https://news.ycombinator.com/item?id=1")


def test_success_lists_items_under_key():
    env = from_success(Success(items=[_story(1), _story(2)], meta={"topic": "ai"}, items_key="stories"))
    assert env.status is Status.OK
    assert env.body["count"] == 2
    assert env.body["topic"] == "ai"
    assert [s["id"] for s in env.body["stories"]] == [1, 2]


def test_single_item_flattens():
    page = ExtractedPage(url="https://example.com", type="html", content="hi", length=2)
    env = from_success(Success(items=[page], items_key="pages", flatten=True))
    assert env.body["url"] == "https://example.com"
    assert env.body["count"] == 1
    assert "pages" not in env.body


def test_empty_success_keeps_key():
    env = from_success(Success(items=[], meta={"query": "x"}, items_key="articles"))
    assert env.body == {"query": "x", "articles": [], "count": 0}


def test_failure_mapping():
    nf = from_failure(Failure(FailureKind.NOT_FOUND, "Coin not found", {"suggestion": "try bitcoin"}))
    assert nf.status.http_status == 404
    assert nf.body == {"error": "Coin not found", "suggestion": "try bitcoin"}

    up = from_failure(Failure(FailureKind.UPSTREAM_UNAVAILABLE, "chembl is unavailable", {"message": "503"}))
    assert up.status.http_status == 502


def test_parameter_error():
    env = from_parameter_error(ParameterError("Missing ?q= parameter", example="/api/arxiv?q=x"))
    assert env.status.http_status == 400
    assert env.body == {"error": "Missing ?q= parameter", "example": "/api/arxiv?q=x"}
    assert "example" not in from_parameter_error(ParameterError("Invalid limit")).body


def test_denial_hint_depends_on_tier():
    decision = QuotaDecision(admitted=False, usage=20, limit=20)
    free = from_denial(decision, CallerIdentity(None, False, "1.2.3.4"))
    pro = from_denial(decision, CallerIdentity("k", True, "key:k"))
    assert free.status.http_status == 429
    assert free.body["error"] == "Daily limit reached"
    assert free.body["usage"] == free.body["limit"] == 20
    assert free.body["upgrade"] != pro.body["upgrade"]


def test_internal_error_and_unknown_endpoint():
    assert internal_error().status.http_status == 500
    resp = unknown_endpoint(["/api/hn"]).to_response()
    assert resp.status_code == 404
    assert json.loads(resp.body) == {"error": "Unknown endpoint", "endpoints": ["/api/hn"]}


def test_parameter_error_lists_examples():
    e = ParameterError("Missing parameter", example="/api/drugs?target=EGFR", examples=["/api/drugs?q=aspirin"])
    assert from_parameter_error(e).body["examples"] == ["/api/drugs?q=aspirin"]
    assert "examples" not in from_parameter_error(ParameterError("Invalid limit")).body
