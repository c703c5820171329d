# /// script
# requires-python = ">=3.9"
# dependencies = [
#     "swrproxy",
#     "httpx",
# ]
#
# [tool.uv.sources]
# swrproxy = { path = "../", editable = true }
# ///


import asyncio
import logging
import time

import httpx

from swrproxy.asgi import SWRProxyApp

logging.basicConfig(level=logging.INFO)

processed_requests = 0


def origin(request: httpx.Request) -> httpx.Response:
    global processed_requests
    processed_requests += 1
    return httpx.Response(
        200,
        headers={"Cache-Control": "s-maxage=2, stale-while-revalidate=60, max-age=1"},
        json={"data": {"created_at": time.time(), "processed_requests": processed_requests}},
    )


async def main():
    app = SWRProxyApp(transport=httpx.MockTransport(origin))

    async with app, httpx.AsyncClient(transport=httpx.ASGITransport(app=app)) as client:
        for _ in range(6):
            response = await client.post(
                "http://proxy/",
                json={"query": "{ items }"},
                headers={"x-gql-host": "https://origin.example.com/graphql"},
            )
            print(response.headers["x-edge-cache-status"], response.json())
            await asyncio.sleep(1)


if __name__ == "__main__":
    asyncio.run(main())
