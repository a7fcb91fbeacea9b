"""
Example script showing how to plan a journey with live departures.

Needs PTV_DEV_ID / PTV_API_KEY and either NETWORK_DATA_DIR or the PG_*
variables (see journey_module/config.py).
"""

import asyncio
import sys

from journey_module.planner import PlanRequest, create_journey_planner


async def main(origin, destination):
    print("Creating planner...")
    planner = create_journey_planner()

    try:
        result = await planner.plan(PlanRequest(origin_stop_id=origin, destination_stop_id=destination))
    finally:
        await planner.aclose()

    print(f"\n{'=' * 60}")
    print(f"Found {len(result.itineraries)} itineraries, {len(result.variants)} timed departures")
    print(f"{'=' * 60}")

    for i, variant in enumerate(result.variants, 1):
        print(f"\nDeparture {i}: {variant.departure_time:%H:%M} -> {variant.arrival_time:%H:%M}"
              f"{' (estimated)' if variant.degraded else ''}")
        for leg in variant.legs:
            print(f"  {leg.route_name or leg.route_id}: {leg.origin_stop_id} -> {leg.destination_stop_id}"
                  f"  {leg.departure_time:%H:%M}-{leg.arrival_time:%H:%M} [{leg.tier.value}]")


if __name__ == "__main__":
    if len(sys.argv) != 3:
        print("usage: python example_usage.py ORIGIN_STOP_ID DESTINATION_STOP_ID")
        sys.exit(1)
    asyncio.run(main(int(sys.argv[1]), int(sys.argv[2])))
