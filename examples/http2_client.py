"""
HTTP/2 client example using gohttp.

Opens one auto-reconnecting session, multiplexes concurrent requests
over it and spreads a benchmark over a small pool of sessions.
"""

import asyncio
import logging

from gohttp import H2SessionPool, http2_connect, run_benchmark

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

ORIGIN = "https://nghttp2.org/httpbin"


async def multiplexed_requests():
    """Send concurrent requests on one connection."""
    client = http2_connect(ORIGIN, timeout=10)
    try:
        results = await asyncio.gather(*(
            client.get("/get", query={"n": i}) for i in range(10)
        ))
        for res in results:
            logger.info(f"Status {res.status}, {res.length} bytes")
        logger.info(f"Session metrics: {client.sessions.metrics}")
    finally:
        await client.close()


async def pooled_benchmark():
    """Benchmark over two sessions."""
    async with H2SessionPool(ORIGIN, size=2, timeout=10) as pool:
        pool.start()
        result = await run_benchmark(lambda: pool.get("/get"), total=200, concurrency=20)
        logger.info(result.report())


async def main():
    await multiplexed_requests()
    await pooled_benchmark()


if __name__ == "__main__":
    asyncio.run(main())
