from __future__ import annotations

import pytest

from dreamcut import telemetry
from dreamcut.brief import assemble_brief, coerce_brief_payload
from dreamcut.errors import AssemblyError, ValidationError
from dreamcut.schemas import AnalysisMap, BriefPlan, BriefRequest, MediaAsset


def _request() -> BriefRequest:
    asset = MediaAsset(id="a1", url="https://cdn.example.com/a1.png", media_type="image")
    return BriefRequest(query="make a teaser", assets=[asset], intent="video")


def test_each_assembly_gets_a_fresh_id() -> None:
    first = assemble_brief(_request(), AnalysisMap(), BriefPlan())
    second = assemble_brief(_request(), AnalysisMap(), BriefPlan())
    assert first.brief_id != second.brief_id
    assert first.brief_id.startswith("brief-")
    assert [ev["payload"]["brief_id"] for ev in telemetry.get_events("brief.assembled")] == [
        first.brief_id,
        second.brief_id,
    ]


def test_package_is_isolated_from_later_input_mutation() -> None:
    plan = BriefPlan(cost_estimate=2.0)
    package = assemble_brief(_request(), AnalysisMap(), plan)
    plan.asset_processing["a9"] = []
    assert package.plan.asset_processing == {}


def test_missing_plan_yields_empty_plan() -> None:
    package = assemble_brief(_request(), AnalysisMap(), None)
    assert package.plan.creative_options == []


@pytest.mark.parametrize("request_, analysis", [(None, AnalysisMap()), (_request(), None)])
def test_missing_request_or_analysis_is_fatal(request_, analysis) -> None:
    with pytest.raises(AssemblyError):
        assemble_brief(request_, analysis, BriefPlan())


def test_legacy_nested_brief_is_migrated() -> None:
    package = coerce_brief_payload(
        {
            "briefId": "brief-legacy",
            "brief": {
                "query": "old teaser",
                "intent": "image",
                "assets": [{"id": "a1", "url": "https://cdn.example.com/a1.png", "mediaType": "image"}],
                "creativeOptions": [
                    {
                        "id": "option-1",
                        "rank": 1,
                        "title": "Old option",
                        "description": "from the nested block",
                        "creativeDirection": {
                            "openingStrategy": "hero",
                            "visualTreatment": "clean",
                            "pacing": "steady",
                            "transitionStyle": "cut",
                        },
                        "assetUsage": {"primaryAssetRef": "a1"},
                        "targetEngagement": "medium",
                    }
                ],
                "costEstimate": 3.5,
            },
        }
    )
    assert package.brief_id == "brief-legacy"
    assert package.request.query == "old teaser"
    assert package.request.assets[0].id == "a1"
    assert package.plan.creative_options[0].title == "Old option"
    assert package.plan.cost_estimate == 3.5


def test_flat_shape_wins_when_both_are_present() -> None:
    package = coerce_brief_payload(
        {
            "briefId": "brief-both",
            "request": {"query": "flat query"},
            "analysis": {},
            "plan": {"costEstimate": 1.5},
            "brief": {"query": "nested query", "costEstimate": 9.0},
        }
    )
    assert package.request.query == "flat query"
    assert package.plan.cost_estimate == 1.5


def test_flat_payload_round_trips_through_wire_format() -> None:
    original = assemble_brief(_request(), AnalysisMap(), BriefPlan(cost_estimate=4.0))
    restored = coerce_brief_payload(original.wire_dump())
    assert restored == original


def test_invalid_stored_brief_raises_field_qualified_error() -> None:
    with pytest.raises(ValidationError) as excinfo:
        coerce_brief_payload({"briefId": "x", "request": {"query": "q"}, "analysis": {}, "plan": {"costEstimate": -1}})
    assert excinfo.value.issues[0].field == "plan.costEstimate"
