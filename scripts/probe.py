"""Fire a burst of GETs through the throttled client and report admission times."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os

from dotenv import load_dotenv

from throttler.http.client import ThrottledClient
from throttler.limits import load_policies


async def probe(url: str, *, count: int, cost: float, policies_path: str | None) -> None:
    policies = load_policies(policies_path)
    loop = asyncio.get_running_loop()
    started = loop.time()

    async with ThrottledClient(policies) as client:
        async def one(idx: int) -> None:
            response = await client.get(url, cost=cost)
            elapsed = loop.time() - started
            print(f"#{idx:<3} {response.status_code} after {elapsed:.3f}s")

        await asyncio.gather(*(one(idx) for idx in range(count)))


def main() -> None:
    load_dotenv()
    logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO"))
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("url")
    parser.add_argument("--count", type=int, default=5)
    parser.add_argument("--cost", type=float, default=1)
    parser.add_argument("--policies", default=None, help="YAML policy file")
    args = parser.parse_args()
    asyncio.run(probe(args.url, count=args.count, cost=args.cost, policies_path=args.policies))


if __name__ == "__main__":
    main()
