"""fal.ai queue adapter.

Processing flow:
    1. POST the request to `<endpoint>/<model>`; fal answers immediately with
       a request id plus status/response/cancel URLs.
    2. Each poll GETs the status URL (IN_QUEUE, IN_PROGRESS, COMPLETED).
    3. Once COMPLETED, the response URL holds either `images[0].url` or an
       error detail, which becomes a `failed` snapshot.

fal exposes no intermediate images; progress is read from "NN%" markers in
the request logs when the model emits them.
"""

import re
from dataclasses import dataclass
from typing import cast
from typing_extensions import override

import httpx
from loguru import logger

from ..common.errors import AdapterError
from ..common.schema_job import EditParams, GenerationParams
from ..common.schema_job_record import JobHandle, JobSnapshot, JobStatus
from .base import Capability, ModelAdapter
from .http_client import JSONObject, json_object, send

_PERCENT_RE = re.compile(r"(\d{1,3})%")


@dataclass(frozen=True)
class _FalRequest:
    status_url: str
    response_url: str
    cancel_url: str


def _first_image_url(payload: JSONObject) -> str | None:
    images = payload.get("images")
    if isinstance(images, list) and images:
        first = cast(list[object], images)[0]
        if isinstance(first, dict):
            url = cast(JSONObject, first).get("url")
            if isinstance(url, str) and url:
                return url
    return None


def _log_progress(payload: JSONObject) -> int:
    logs = payload.get("logs")
    if not isinstance(logs, list):
        return 0
    for entry in reversed(cast(list[object], logs)):
        if isinstance(entry, dict):
            message = cast(JSONObject, entry).get("message")
            match = _PERCENT_RE.search(message) if isinstance(message, str) else None
            if match:
                return min(99, int(match.group(1)))
    return 0


class FalAdapter(ModelAdapter):
    def __init__(
        self,
        api_key: str,
        *,
        model: str = "fal-ai/flux/dev",
        edit_model: str = "fal-ai/flux/dev/image-to-image",
        endpoint: str = "https://queue.fal.run",
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
        model_id: str = "fal",
    ):
        if not api_key:
            raise ValueError("fal adapter requires an API key")
        self.model_id: str = model_id
        self.capabilities: tuple[Capability, ...] = ("generate", "edit")
        self.model: str = model
        self.edit_model: str = edit_model
        self.endpoint: str = endpoint.rstrip("/")
        self._client: httpx.AsyncClient = client or httpx.AsyncClient(timeout=timeout)
        self._headers: dict[str, str] = {
            "Authorization": f"Key {api_key}",
            "Content-Type": "application/json",
        }
        self._requests: dict[str, _FalRequest] = {}

    @override
    async def generate(self, params: GenerationParams) -> JobHandle:
        width, height = params.dimensions()
        payload: JSONObject = {
            "prompt": params.prompt,
            "image_size": {"width": width, "height": height},
            "num_images": 1,
        }
        if params.negative_prompt:
            payload["negative_prompt"] = params.negative_prompt
        return await self._submit(self.model, payload)

    @override
    async def edit(self, params: EditParams) -> JobHandle:
        payload: JSONObject = {
            "prompt": params.prompt,
            "image_url": params.image_url,
            "mask_url": params.mask_url,
            "strength": params.strength,
            "num_images": 1,
        }
        return await self._submit(self.edit_model, payload)

    @override
    async def poll_status(self, handle: JobHandle) -> JobSnapshot:
        request = self._lookup(handle)
        response = await send(
            self._client,
            "GET",
            request.status_url,
            model_id=self.model_id,
            headers=self._headers,
            params={"logs": 1},
        )
        status_payload = json_object(response, self.model_id)
        status = str(status_payload.get("status", "")).upper()

        if status == "IN_QUEUE":
            position = status_payload.get("queue_position")
            return JobSnapshot(
                status=JobStatus.queued,
                eta=None if not isinstance(position, int) else float(position * 5),
            )
        if status == "IN_PROGRESS":
            return JobSnapshot(status=JobStatus.processing, progress=_log_progress(status_payload))
        if status == "COMPLETED":
            return await self._fetch_result(request)

        raise AdapterError(f"fal: unknown request status {status!r}", model_id=self.model_id)

    @override
    async def cancel(self, handle: JobHandle) -> bool:
        request = self._requests.get(handle.reference)
        if request is None:
            return False
        # 400 means the request already completed: nothing to cancel.
        response = await send(
            self._client,
            "PUT",
            request.cancel_url,
            model_id=self.model_id,
            headers=self._headers,
            accept=(400,),
        )
        return response.status_code < 400

    @override
    def forget(self, handle: JobHandle) -> None:
        _ = self._requests.pop(handle.reference, None)

    @override
    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _submit(self, model: str, payload: JSONObject) -> JobHandle:
        response = await send(
            self._client,
            "POST",
            f"{self.endpoint}/{model.strip('/')}",
            model_id=self.model_id,
            headers=self._headers,
            json=payload,
        )
        data = json_object(response, self.model_id)
        request_id = data.get("request_id")
        if not isinstance(request_id, str) or not request_id:
            raise AdapterError("fal did not return a request id", transient=False, model_id=self.model_id)

        base = f"{self.endpoint}/{'/'.join(model.strip('/').split('/')[:2])}/requests/{request_id}"
        self._requests[request_id] = _FalRequest(
            status_url=str(data.get("status_url") or f"{base}/status"),
            response_url=str(data.get("response_url") or base),
            cancel_url=str(data.get("cancel_url") or f"{base}/cancel"),
        )
        logger.info(f"fal request {request_id} submitted to {model}")
        return JobHandle(model_id=self.model_id, reference=request_id)

    async def _fetch_result(self, request: _FalRequest) -> JobSnapshot:
        response = await send(
            self._client,
            "GET",
            request.response_url,
            model_id=self.model_id,
            headers=self._headers,
            accept=(400, 422),
        )
        payload = json_object(response, self.model_id)
        if response.status_code >= 400 or payload.get("error"):
            detail = payload.get("detail") or payload.get("error") or "fal request failed"
            return JobSnapshot(status=JobStatus.failed, error_message=str(detail)[:500])

        url = _first_image_url(payload)
        if url is None:
            return JobSnapshot(
                status=JobStatus.failed, error_message="fal completed without an image"
            )
        return JobSnapshot(status=JobStatus.succeeded, progress=100, final_url=url)

    def _lookup(self, handle: JobHandle) -> _FalRequest:
        request = self._requests.get(handle.reference)
        if request is None:
            raise AdapterError(
                f"fal: unknown request {handle.reference}", transient=False, model_id=self.model_id
            )
        return request
