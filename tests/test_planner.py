import asyncio
import logging

import pytest

from journey_module import network, planner as planner_module
from journey_module.exceptions import NoRouteFound
from journey_module.planner import JourneyPlanner, PlanRequest, PlanResult, create_journey_planner, request_logger

from conftest import ALPHA, DELTA, REQUESTED, at


@pytest.fixture
def planner(store, settings, live_source):
    return JourneyPlanner(store, live_source, settings)


def test_plan_returns_ranked_variants(planner):
    result = asyncio.run(planner.plan(PlanRequest(ALPHA, DELTA, k=1, departure_time=REQUESTED)))

    assert len(result.itineraries) == 1
    assert [v.arrival_time for v in result.variants] == [at(26), at(52), at(57)]
    assert [leg.route_id for leg in result.legs] == [10, 20]


def test_plan_empty_when_no_itinerary(planner, live_source):
    result = asyncio.run(planner.plan(PlanRequest(ALPHA, ALPHA, departure_time=REQUESTED)))

    assert result.variants == []
    assert result.itineraries == []
    assert result.legs == []
    assert live_source.calls == []


def test_raise_if_empty():
    with pytest.raises(NoRouteFound):
        PlanResult().raise_if_empty()


def test_plan_rejects_zero_departures(planner):
    with pytest.raises(ValueError):
        asyncio.run(planner.plan(PlanRequest(ALPHA, DELTA, departures_per_journey=0)))


def test_search_is_static(planner, live_source):
    result = planner.search(PlanRequest(ALPHA, DELTA, k=3))

    assert len(result.itineraries) == 2
    assert all(leg.departure_time is None for leg in result.legs)
    assert live_source.calls == []


def test_replacement_services_flag(planner):
    result = planner.search(PlanRequest(ALPHA, DELTA, k=1, include_replacement_services=True))

    assert [leg.route_id for leg in result.legs] == [40]


def test_request_id_in_log_lines(planner, caplog):
    with caplog.at_level(logging.INFO, logger="journey_module"):
        asyncio.run(planner.plan(PlanRequest(ALPHA, DELTA, k=1, departure_time=REQUESTED), request_id="req-42"))

    planner_lines = [r.getMessage() for r in caplog.records if r.name == "journey_module.planner"]
    assert planner_lines
    assert all(line.startswith("[req-42] ") for line in planner_lines)
    # Search and enrichment log through the same adapter
    assert any("raw paths" in line for line in planner_lines)
    assert any("Enriched" in line for line in planner_lines)


def test_request_logger_generates_ids():
    first, second = request_logger(), request_logger()

    assert first.extra["request_id"] != second.extra["request_id"]
    assert first.process("hello", {})[0] == f"[{first.extra['request_id']}] hello"


def test_created_planner_never_builds_graphs_per_request(store, settings, live_source, monkeypatch):
    monkeypatch.setenv("PTV_DEV_ID", "1234")
    monkeypatch.setenv("PTV_API_KEY", "secret")
    monkeypatch.setattr(planner_module, "load_store", lambda settings: store)
    created = create_journey_planner(settings)
    asyncio.run(created.aclose())

    def no_rebuild(*args, **kwargs):
        raise AssertionError("graph built while serving a request")

    monkeypatch.setattr(network, "build_transit_graph", no_rebuild)
    serving = JourneyPlanner(created.store, live_source, settings)
    for include_replacement in (False, True):
        request = PlanRequest(ALPHA, DELTA, departure_time=REQUESTED, include_replacement_services=include_replacement)
        assert asyncio.run(serving.plan(request)).variants
