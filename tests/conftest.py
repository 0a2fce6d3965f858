import asyncio

import pytest
from aiohttp import web

from livepeer_stress.config import GatewayTarget, RetrySettings

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-image"


class FakeGateway:
    """In-process Livepeer gateway: fails the first ``fail_times`` POSTs, then answers."""

    def __init__(self, fail_times=0, fail_status=500, images=0, image_status=200,
                 hang_seconds=0.0, barrier=None, image_body=None):
        self.fail_times = fail_times
        self.fail_status = fail_status
        self.images = images
        self.image_status = image_status
        self.hang_seconds = hang_seconds
        self.barrier = barrier
        self.image_body = image_body
        self.calls = 0
        self.image_calls = 0
        self.bodies = []
        self.headers = []
        self._arrived = 0
        self._all_arrived = asyncio.Event() if barrier else None

    async def _generate(self, request):
        self.calls += 1
        self.bodies.append(await request.json())
        self.headers.append(dict(request.headers))
        if self.barrier:
            # hold every request until ``barrier`` of them are in flight together
            self._arrived += 1
            if self._arrived >= self.barrier:
                self._all_arrived.set()
            await asyncio.wait_for(self._all_arrived.wait(), timeout=5)
        if self.hang_seconds:
            await asyncio.sleep(self.hang_seconds)
        if self.calls <= self.fail_times:
            return web.json_response({"error": "boom"}, status=self.fail_status)
        if request.path.endswith("text-to-image"):
            if self.image_body is not None:
                return web.json_response(self.image_body)
            images = [{"url": f"/stream/img{i}.png", "seed": i} for i in range(self.images)]
            return web.json_response({"images": images})
        return web.json_response({"choices": [{"message": {"role": "assistant", "content": "hi"}}]})

    async def _image(self, request):
        self.image_calls += 1
        if self.image_status != 200:
            return web.Response(status=self.image_status)
        return web.Response(body=PNG_BYTES, content_type="image/png")

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/llm", self._generate)
        app.router.add_post("/text-to-image", self._generate)
        app.router.add_get("/stream/{name}", self._image)
        return app


@pytest.fixture
def fast_retry():
    return RetrySettings(max_retries=3, retry_delay_ms=10, timeout_ms=5_000, settle_delay_ms=0)


@pytest.fixture
def make_target():
    def _make(base_url, call_type="llm", label="gateway1"):
        endpoint = "llm" if call_type == "llm" else "text-to-image"
        return GatewayTarget(label=label, base_url=base_url, endpoint=endpoint, call_type=call_type)
    return _make


@pytest.fixture
def prompts_file(tmp_path):
    path = tmp_path / "prompts"
    path.write_text(
        "llm_prompt=Summarize the history of\nvideo streaming in three sentences.\n"
        "img_prompt = a lighthouse at dusk, oil painting\n",
        encoding="utf-8",
    )
    return path


@pytest.fixture
def gateway_cls():
    return FakeGateway
