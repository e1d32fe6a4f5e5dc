"""
Echo + Pipeline Example

This example demonstrates the basic resolver pattern:
1. Load an API config with a unit and a pipeline resolver
2. Build the resolver map
3. Resolve fields with request headers

Run: python examples/01-echo-pipeline/main.py
"""

import asyncio
import logging
from pathlib import Path

from appsync_local import UserResolverError, build_resolver_map, load_config

HERE = Path(__file__).parent
HEADERS = {"headers": {"x-api-key": "local-dev-key", "host": "localhost:4000"}}


async def main():
    config = load_config(HERE / "appsync-config.json")
    resolvers = build_resolver_map(config)

    echo = resolvers["Query"]["echo"]
    greet = resolvers["Mutation"]["greet"]

    print("echo:", await echo.resolve(None, {"msg": "hi"}, HEADERS))
    print("greet:", await greet.resolve(None, {"name": "Ada"}, HEADERS))
    print("greet (early return):", await greet.resolve(None, {"name": "cached"}, HEADERS))

    try:
        await greet.resolve(None, {"name": "  "}, HEADERS)
    except UserResolverError as e:
        print(f"greet (error): {e.error_type}: {e.message}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main())
