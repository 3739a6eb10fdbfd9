"""Minimal demonstration of a two-lane auto battle."""

import asyncio

from chat_core.api.service import create_dual_lane, fetch_models


async def main() -> None:
    catalog = await fetch_models()
    if not catalog.models:
        print("No models available, set CHAT_API_KEY first.")
        return
    model = catalog.models[0]
    print(f"Platform: {catalog.platform}  Balance: {catalog.balance or '-'}  Model: {model.id}")

    duet = create_dual_lane(on_error=lambda lane, exc: print(f"[{lane}] {exc}"))
    duet.select_model("left", model.id, model.name)
    duet.select_model("right", model.id, model.name)

    await duet.send("用一句话提出一个值得辩论的话题，并给出你的立场。", target="left")
    turns = await duet.run_auto_battle(max_turns=4)

    for name, lane in duet.lanes.items():
        print(f"==== {name} ({turns} turns) ====")
        for msg in lane.messages:
            print(f"{msg.role.value}: {msg.content}")


if __name__ == "__main__":
    asyncio.run(main())
