"""Tests for the fal.ai and AI Horde adapters against mocked HTTP transports."""

import json
from collections.abc import Callable

import httpx
import pytest

from cl_image_jobs.adapters.base import ModelAdapter
from cl_image_jobs.adapters.fal import FalAdapter
from cl_image_jobs.adapters.horde import HordeAdapter
from cl_image_jobs.adapters.http_client import error_detail, is_transient_status
from cl_image_jobs.common.errors import AdapterError
from cl_image_jobs.common.schema_job import EditParams, GenerationParams
from cl_image_jobs.common.schema_job_record import JobHandle, JobStatus

Handler = Callable[[httpx.Request], httpx.Response]

FAL_BASE = "https://queue.fal.run/fal-ai/flux/requests/r1"


class Recorder:
    """Transport handler that records requests and answers from a route table."""

    def __init__(self, routes: dict[tuple[str, str], Handler | httpx.Response]):
        self.routes: dict[tuple[str, str], Handler | httpx.Response] = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"detail": f"no route {request.method} {request.url.path}"})
        return route(request) if callable(route) else route

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


def _params(**kwargs) -> GenerationParams:
    return GenerationParams(prompt="a cat", size="1000x700", strength=0.6, **kwargs)


# ─────────────────────────────────────────────────────────────
# 1. Shared HTTP helpers
# ─────────────────────────────────────────────────────────────


class TestHttpHelpers:
    @pytest.mark.parametrize("status,transient", [(429, True), (503, True), (408, True), (401, False), (422, False)])
    def test_transient_statuses(self, status: int, transient: bool):
        assert is_transient_status(status) is transient

    def test_error_detail_prefers_detail_field(self):
        assert error_detail(httpx.Response(400, json={"detail": "bad prompt"})) == "bad prompt"
        assert error_detail(httpx.Response(500, text="oops")) == "oops"


# ─────────────────────────────────────────────────────────────
# 2. fal.ai
# ─────────────────────────────────────────────────────────────


def _fal_submit_response(request: httpx.Request) -> httpx.Response:
    _ = request
    return httpx.Response(
        200,
        json={
            "request_id": "r1",
            "status_url": f"{FAL_BASE}/status",
            "response_url": FAL_BASE,
            "cancel_url": f"{FAL_BASE}/cancel",
        },
    )


def _fal(routes: dict[tuple[str, str], Handler | httpx.Response]) -> tuple[FalAdapter, Recorder]:
    routes = {("POST", "/fal-ai/flux/dev"): _fal_submit_response, **routes}
    recorder = Recorder(routes)
    return FalAdapter("secret", client=recorder.client()), recorder


class TestFalAdapter:
    def test_requires_api_key(self):
        with pytest.raises(ValueError):
            _ = FalAdapter("")

    @pytest.mark.asyncio
    async def test_submit(self):
        adapter, recorder = _fal({})
        handle = await adapter.generate(_params(negative_prompt="blurry"))
        assert isinstance(adapter, ModelAdapter)
        assert handle == JobHandle(model_id="fal", reference="r1")

        request = recorder.requests[0]
        assert request.headers["Authorization"] == "Key secret"
        body = json.loads(request.content)
        assert body["prompt"] == "a cat"
        assert body["negative_prompt"] == "blurry"
        assert body["image_size"] == {"width": 1000, "height": 700}
        await adapter.aclose()

    @pytest.mark.asyncio
    async def test_edit_uses_edit_model(self):
        adapter, recorder = _fal({("POST", "/fal-ai/flux/dev/image-to-image"): _fal_submit_response})
        params = EditParams(prompt="add a hat", image_url="https://x/img.png", mask_url="https://x/m.png", strength=0.5)
        _ = await adapter.edit(params)
        body = json.loads(recorder.requests[0].content)
        assert body["image_url"] == "https://x/img.png"
        assert body["mask_url"] == "https://x/m.png"
        assert body["strength"] == 0.5

    @pytest.mark.asyncio
    async def test_queued_and_in_progress(self):
        statuses = iter(
            [
                {"status": "IN_QUEUE", "queue_position": 2},
                {"status": "IN_PROGRESS", "logs": [{"message": "loading"}, {"message": "step 45%"}]},
            ]
        )
        adapter, _ = _fal({("GET", "/fal-ai/flux/requests/r1/status"): lambda r: httpx.Response(200, json=next(statuses))})
        handle = await adapter.generate(_params())

        queued = await adapter.poll_status(handle)
        assert queued.status == JobStatus.queued
        assert queued.eta == 10.0

        running = await adapter.poll_status(handle)
        assert running.status == JobStatus.processing
        assert running.progress == 45

    @pytest.mark.asyncio
    async def test_completed(self):
        adapter, _ = _fal(
            {
                ("GET", "/fal-ai/flux/requests/r1/status"): httpx.Response(200, json={"status": "COMPLETED"}),
                ("GET", "/fal-ai/flux/requests/r1"): httpx.Response(
                    200, json={"images": [{"url": "https://cdn.fal/out.png"}]}
                ),
            }
        )
        handle = await adapter.generate(_params())
        snapshot = await adapter.poll_status(handle)
        assert snapshot.status == JobStatus.succeeded
        assert snapshot.final_url == "https://cdn.fal/out.png"
        assert snapshot.progress == 100

    @pytest.mark.asyncio
    async def test_provider_failure_is_a_snapshot(self):
        adapter, _ = _fal(
            {
                ("GET", "/fal-ai/flux/requests/r1/status"): httpx.Response(200, json={"status": "COMPLETED"}),
                ("GET", "/fal-ai/flux/requests/r1"): httpx.Response(422, json={"detail": "NSFW content"}),
            }
        )
        handle = await adapter.generate(_params())
        snapshot = await adapter.poll_status(handle)
        assert snapshot.status == JobStatus.failed
        assert snapshot.error_message == "NSFW content"

    @pytest.mark.asyncio
    async def test_bad_credentials_are_fatal(self):
        adapter, _ = _fal({("POST", "/fal-ai/flux/dev"): httpx.Response(401, json={"detail": "Unauthorized"})})
        with pytest.raises(AdapterError) as exc_info:
            _ = await adapter.generate(_params())
        assert exc_info.value.transient is False
        assert "401" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_server_errors_are_transient(self):
        adapter, _ = _fal({("GET", "/fal-ai/flux/requests/r1/status"): httpx.Response(503, text="busy")})
        handle = await adapter.generate(_params())
        with pytest.raises(AdapterError) as exc_info:
            _ = await adapter.poll_status(handle)
        assert exc_info.value.transient is True

    @pytest.mark.asyncio
    async def test_transport_errors_are_transient(self):
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        adapter, _ = _fal({("GET", "/fal-ai/flux/requests/r1/status"): refuse})
        handle = await adapter.generate(_params())
        with pytest.raises(AdapterError) as exc_info:
            _ = await adapter.poll_status(handle)
        assert exc_info.value.transient is True

    @pytest.mark.asyncio
    async def test_unknown_handle(self):
        adapter, _ = _fal({})
        with pytest.raises(AdapterError) as exc_info:
            _ = await adapter.poll_status(JobHandle(model_id="fal", reference="zzz"))
        assert exc_info.value.transient is False
        assert await adapter.cancel(JobHandle(model_id="fal", reference="zzz")) is False

    @pytest.mark.asyncio
    async def test_cancel(self):
        responses = iter([httpx.Response(202, json={}), httpx.Response(400, json={"detail": "completed"})])
        adapter, recorder = _fal({("PUT", "/fal-ai/flux/requests/r1/cancel"): lambda r: next(responses)})
        handle = await adapter.generate(_params())
        assert await adapter.cancel(handle) is True
        assert await adapter.cancel(handle) is False
        assert recorder.requests[-1].method == "PUT"

    @pytest.mark.asyncio
    async def test_forget_drops_request_urls(self):
        adapter, recorder = _fal({})
        handle = await adapter.generate(_params())
        adapter.forget(handle)
        assert adapter._requests == {}
        with pytest.raises(AdapterError):
            _ = await adapter.poll_status(handle)
        assert await adapter.cancel(handle) is False
        assert len(recorder.requests) == 1


# ─────────────────────────────────────────────────────────────
# 3. AI Horde
# ─────────────────────────────────────────────────────────────


def _horde(routes: dict[tuple[str, str], Handler | httpx.Response]) -> tuple[HordeAdapter, Recorder]:
    routes = {("POST", "/api/v2/generate/async"): httpx.Response(202, json={"id": "h1"}), **routes}
    recorder = Recorder(routes)
    return HordeAdapter("hordekey", client=recorder.client()), recorder


def _check(**kwargs) -> httpx.Response:
    payload = {
        "finished": 0,
        "processing": 0,
        "waiting": 1,
        "done": False,
        "faulted": False,
        "wait_time": 30,
        "is_possible": True,
    }
    payload.update(kwargs)
    return httpx.Response(200, json=payload)


class TestHordeAdapter:
    @pytest.mark.asyncio
    async def test_submit_payload(self):
        adapter, recorder = _horde({})
        handle = await adapter.generate(_params(negative_prompt="blurry"))
        assert handle == JobHandle(model_id="ai_horde", reference="h1")

        request = recorder.requests[0]
        assert request.headers["apikey"] == "hordekey"
        body = json.loads(request.content)
        assert body["prompt"] == "a cat ### blurry"
        assert body["params"]["width"] == 960
        assert body["params"]["height"] == 640
        assert body["params"]["denoising_strength"] == 0.6
        assert body["models"] == ["stable_diffusion"]

    @pytest.mark.asyncio
    async def test_edit_payload(self):
        adapter, recorder = _horde({})
        _ = await adapter.edit(
            EditParams(prompt="add a hat", size="512x512", image_url="https://x/i.png", mask_url="https://x/m.png")
        )
        body = json.loads(recorder.requests[0].content)
        assert body["source_image"] == "https://x/i.png"
        assert body["source_mask"] == "https://x/m.png"
        assert body["source_processing"] == "inpainting"

    @pytest.mark.asyncio
    async def test_queued_then_processing(self):
        checks = iter([_check(), _check(waiting=0, processing=1, finished=1, wait_time=12)])
        adapter, _ = _horde({("GET", "/api/v2/generate/check/h1"): lambda r: next(checks)})
        handle = await adapter.generate(_params())

        queued = await adapter.poll_status(handle)
        assert queued.status == JobStatus.queued
        assert queued.eta == 30.0

        running = await adapter.poll_status(handle)
        assert running.status == JobStatus.processing
        assert running.progress == 50
        assert running.eta == 12.0

    @pytest.mark.asyncio
    async def test_done(self):
        adapter, _ = _horde(
            {
                ("GET", "/api/v2/generate/check/h1"): _check(done=True, finished=1, waiting=0),
                ("GET", "/api/v2/generate/status/h1"): httpx.Response(
                    200, json={"generations": [{"img": "https://r2.horde/out.webp"}]}
                ),
            }
        )
        handle = await adapter.generate(_params())
        snapshot = await adapter.poll_status(handle)
        assert snapshot.status == JobStatus.succeeded
        assert snapshot.final_url == "https://r2.horde/out.webp"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("check", [{"faulted": True}, {"is_possible": False}])
    async def test_failures_are_snapshots(self, check: dict[str, bool]):
        adapter, _ = _horde({("GET", "/api/v2/generate/check/h1"): _check(**check)})
        handle = await adapter.generate(_params())
        snapshot = await adapter.poll_status(handle)
        assert snapshot.status == JobStatus.failed
        assert snapshot.error_message

    @pytest.mark.asyncio
    async def test_rate_limit_is_transient(self):
        adapter, _ = _horde({("GET", "/api/v2/generate/check/h1"): httpx.Response(429, json={"message": "slow down"})})
        handle = await adapter.generate(_params())
        with pytest.raises(AdapterError) as exc_info:
            _ = await adapter.poll_status(handle)
        assert exc_info.value.transient is True
        assert "slow down" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_missing_job_id_is_fatal(self):
        adapter, _ = _horde({("POST", "/api/v2/generate/async"): httpx.Response(202, json={})})
        with pytest.raises(AdapterError) as exc_info:
            _ = await adapter.generate(_params())
        assert exc_info.value.transient is False

    @pytest.mark.asyncio
    async def test_cancel(self):
        responses = iter([httpx.Response(200, json={}), httpx.Response(404, json={"message": "gone"})])
        adapter, _ = _horde({("DELETE", "/api/v2/generate/status/h1"): lambda r: next(responses)})
        handle = await adapter.generate(_params())
        assert await adapter.cancel(handle) is True
        assert await adapter.cancel(handle) is False
        await adapter.aclose()
