"""
End-to-end walk through one ride against the in-process mock backend:

    ENV=mock python demo_flow.py
"""
import asyncio
import logging

from scootride.config import Settings
from scootride.engine import RideEngine
from scootride.services.pricing import format_cost, format_duration

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)

SCOOTER_ID = "SCOOT-900"
CITY = "Malmö"


def show_zone(engine: RideEngine, step: str) -> None:
    state = engine.tracker.state()
    print(f"{step}: rule={state.rule and state.rule.type} error={state.error}")
    if state.rule is not None:
        print(state.rule.model_dump(by_alias=True, exclude_none=True))
    if state.nearest_parking is not None:
        print(f"   nearest parking: {state.nearest_parking.name} ({state.nearest_parking.distance_meters} m)")


async def main():
    settings = Settings(env="mock", default_city=CITY)

    async with RideEngine(settings=settings) as engine:

        # ---------------------------------------------------
        print("\n1️⃣ Loading zones...")
        catalog = await engine.zones.fetch(CITY)
        for zone in catalog.polygons():
            print(f"   {zone.priority:>3} {zone.type:<10} {zone.name}")

        # ---------------------------------------------------
        print("\n2️⃣ Starting ride...")
        ride = await engine.session.start_ride(SCOOTER_ID)
        print(ride.model_dump(by_alias=True, mode="json"))

        # ---------------------------------------------------
        print("\n3️⃣ Riding through the city center...")
        engine.source.emit(55.5951, 13.0062)
        await asyncio.sleep(0.2)
        show_zone(engine, "City center")

        # ---------------------------------------------------
        print("\n4️⃣ Approaching the hospital (throttled, then forced)...")
        engine.source.emit(55.5870, 13.0020)
        show_zone(engine, "Throttled")
        task = engine.tracker.force_refresh()
        if task is not None:
            await task
        show_zone(engine, "Forced refresh")

        # ---------------------------------------------------
        print("\n5️⃣ Accruing...")
        await asyncio.sleep(3)
        session = engine.session
        print(f"   {format_duration(session.duration_seconds)}  {format_cost(session.current_cost, settings.currency)}")

        # ---------------------------------------------------
        print("\n6️⃣ Ending ride...")
        completed = await session.end_ride()
        if completed is None:
            raise Exception("No ride was active")
        print(completed.model_dump(by_alias=True, mode="json"))

        # ---------------------------------------------------
        print("\n7️⃣ Ride history...")
        rides = await engine.history.refetch()
        for past in rides:
            print(f"   {past.id} {past.scooter_id} {past.status.value} {format_cost(past.cost, settings.currency)}")

        print("\n✅ FLOW COMPLETED SUCCESSFULLY")


if __name__ == "__main__":
    asyncio.run(main())
