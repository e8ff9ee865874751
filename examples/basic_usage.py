"""Basic example: cache OpenAI responses and track token usage.

Requires an OpenAI API key in the OPENAI_API_KEY environment variable.
Set REDIS_URL to share the cache between processes; without it an in-memory
store is used.

    OPENAI_API_KEY=sk-... python examples/basic_usage.py
"""

import asyncio
import logging

from modelware import (
    CacheConfig,
    GenerateParams,
    ModelwareServices,
    OpenAIChatModel,
    wrap_model,
)

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")


async def main() -> None:
    async with ModelwareServices.from_config(CacheConfig.from_env(".env")) as services:
        model = wrap_model(
            OpenAIChatModel.create("gpt-4.1-mini"),
            [services.usage_middleware(), services.caching_middleware()],
        )
        params = GenerateParams(prompt=[{"role": "user", "content": "Name three prime numbers."}])

        first = await model.do_generate(params)
        second = await model.do_generate(params)

        print(f"\nAnswer: {first.text}")
        print(f"Served from cache: {second.text == first.text}")
        print(services.metrics.prometheus_text())


if __name__ == "__main__":
    asyncio.run(main())
