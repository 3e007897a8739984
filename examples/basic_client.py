"""
Basic HTTP/1.1 client example using gohttp.

Sends a few requests through the pooled keep-alive client, uploads a
file, downloads a response to disk and runs a short benchmark.
"""

import asyncio
import logging
import os
import tempfile

from gohttp import GoHttp, run_benchmark

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def simple_requests(client: GoHttp):
    """Demonstrate GET and POST requests."""
    logger.info("Making simple GET request...")
    res = await client.get("http://httpbin.org/get", query={"hello": "world"})
    logger.info(f"Response status: {res.status}")
    logger.info(f"Response body length: {res.length} bytes")

    logger.info("Making POST request with a JSON body...")
    res = await client.post("http://httpbin.org/post", body={"message": "Hello, World!"})
    logger.info(f"Response status: {res.status}")
    if res.ok:
        logger.info(f"Server saw: {res.json()['json']}")


async def bound_client(client: GoHttp):
    """Demonstrate a client bound to a base URL."""
    api = client.connect("http://httpbin.org/anything", headers={"X-Example": "bound"})
    res = await api.get("/items", query={"page": 2})
    logger.info(f"Bound request went to: {res.json().get('url')}")


async def upload_and_download(client: GoHttp):
    """Demonstrate multipart upload and download to disk."""
    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, "hello.txt")
        with open(path, "wb") as f:
            f.write(b"Hello from gohttp\n")

        res = await client.up("http://httpbin.org/post", path)
        logger.info(f"Upload status: {res.status}")

        res = await client.download(
            "http://httpbin.org/response-headers",
            dir=tmp,
            query={"Content-Disposition": 'attachment; filename="headers.json"'},
            progress=True,
        )
        logger.info(f"Downloaded to {res.path}")


async def timeouts(client: GoHttp):
    """Timeouts come back as records, not exceptions."""
    res = await client.get("http://httpbin.org/delay/3", timeout=1)
    logger.info(f"Timed out: {res.timeout}, error: {res.error}")


async def benchmark(client: GoHttp):
    """Run a small benchmark against one URL."""
    result = await run_benchmark(
        lambda: client.get("http://httpbin.org/get"),
        total=50,
        concurrency=10,
    )
    logger.info(result.report())


async def main():
    """Run all examples."""
    logger.info("Starting gohttp HTTP/1.1 examples...")

    async with GoHttp(timeout=10) as client:
        try:
            await simple_requests(client)
            await bound_client(client)
            await upload_and_download(client)
            await timeouts(client)
            await benchmark(client)
        except Exception as e:
            logger.error(f"Example failed: {e}")

    logger.info("All examples completed!")


if __name__ == "__main__":
    asyncio.run(main())
