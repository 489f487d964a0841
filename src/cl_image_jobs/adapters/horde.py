"""AI Horde adapter.

Processing flow:
    1. POST `/generate/async` with prompt + params; the Horde returns a job id.
    2. Each poll GETs the lightweight `/generate/check/{id}` endpoint.
    3. When `done`, `/generate/status/{id}` carries `generations[0].img`.
    4. Cancel is `DELETE /generate/status/{id}`.

The Horde reports queue/wait counts rather than a percentage, so progress
is the share of finished generations and `eta` is the Horde's `wait_time`.
"""

from typing import cast
from typing_extensions import override

import httpx
from loguru import logger

from ..common.errors import AdapterError
from ..common.schema_job import EditParams, GenerationParams
from ..common.schema_job_record import JobHandle, JobSnapshot, JobStatus
from .base import Capability, ModelAdapter
from .http_client import JSONObject, json_object, send

DEFAULT_STEPS = 25


def _multiple_of_64(value: int) -> int:
    return max(64, value - value % 64)


def _int(payload: JSONObject, key: str) -> int:
    value = payload.get(key)
    return value if isinstance(value, int) else 0


class HordeAdapter(ModelAdapter):
    def __init__(
        self,
        api_key: str,
        *,
        endpoint: str = "https://aihorde.net/api/v2",
        model: str = "stable_diffusion",
        steps: int = DEFAULT_STEPS,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
        model_id: str = "ai_horde",
    ):
        if not api_key:
            raise ValueError("AI Horde adapter requires an API key")
        self.model_id: str = model_id
        self.capabilities: tuple[Capability, ...] = ("generate", "edit")
        self.endpoint: str = endpoint.rstrip("/")
        self.model: str = model
        self.steps: int = steps
        self._client: httpx.AsyncClient = client or httpx.AsyncClient(timeout=timeout)
        self._headers: dict[str, str] = {"apikey": api_key, "Content-Type": "application/json"}

    @override
    async def generate(self, params: GenerationParams) -> JobHandle:
        return await self._submit(self._payload(params))

    @override
    async def edit(self, params: EditParams) -> JobHandle:
        payload = self._payload(params)
        payload["source_image"] = params.image_url
        payload["source_mask"] = params.mask_url
        payload["source_processing"] = "inpainting"
        return await self._submit(payload)

    @override
    async def poll_status(self, handle: JobHandle) -> JobSnapshot:
        response = await send(
            self._client,
            "GET",
            f"{self.endpoint}/generate/check/{handle.reference}",
            model_id=self.model_id,
            headers=self._headers,
        )
        check = json_object(response, self.model_id)

        if check.get("faulted"):
            return JobSnapshot(status=JobStatus.failed, error_message="AI Horde job faulted")
        if check.get("is_possible") is False:
            return JobSnapshot(
                status=JobStatus.failed,
                error_message="No AI Horde worker can serve this request",
            )
        if check.get("done"):
            return await self._fetch_result(handle)

        finished = _int(check, "finished")
        processing = _int(check, "processing")
        waiting = _int(check, "waiting")
        total = finished + processing + waiting
        eta = float(_int(check, "wait_time"))

        if processing == 0 and finished == 0:
            return JobSnapshot(status=JobStatus.queued, eta=eta)
        return JobSnapshot(
            status=JobStatus.processing,
            progress=min(99, finished * 100 // total) if total else 0,
            eta=eta,
        )

    @override
    async def cancel(self, handle: JobHandle) -> bool:
        # 404 means the Horde already forgot the job (finished or expired).
        response = await send(
            self._client,
            "DELETE",
            f"{self.endpoint}/generate/status/{handle.reference}",
            model_id=self.model_id,
            headers=self._headers,
            accept=(404,),
        )
        return response.status_code < 400

    @override
    def forget(self, handle: JobHandle) -> None:
        # The Horde keeps all job state server-side.
        _ = handle

    @override
    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _payload(self, params: GenerationParams) -> JSONObject:
        width, height = params.dimensions()
        prompt = params.prompt
        if params.negative_prompt:
            prompt = f"{prompt} ### {params.negative_prompt}"
        horde_params: JSONObject = {
            "width": _multiple_of_64(width),
            "height": _multiple_of_64(height),
            "steps": self.steps,
        }
        if params.strength is not None:
            horde_params["denoising_strength"] = params.strength
        return {"prompt": prompt, "params": horde_params, "models": [self.model]}

    async def _submit(self, payload: JSONObject) -> JobHandle:
        response = await send(
            self._client,
            "POST",
            f"{self.endpoint}/generate/async",
            model_id=self.model_id,
            headers=self._headers,
            json=payload,
        )
        job_id = json_object(response, self.model_id).get("id")
        if not isinstance(job_id, str) or not job_id:
            raise AdapterError("AI Horde did not return a job id", transient=False, model_id=self.model_id)
        logger.info(f"AI Horde job {job_id} submitted")
        return JobHandle(model_id=self.model_id, reference=job_id)

    async def _fetch_result(self, handle: JobHandle) -> JobSnapshot:
        response = await send(
            self._client,
            "GET",
            f"{self.endpoint}/generate/status/{handle.reference}",
            model_id=self.model_id,
            headers=self._headers,
        )
        status = json_object(response, self.model_id)
        generations = status.get("generations")
        if isinstance(generations, list) and generations:
            first = cast(list[object], generations)[0]
            if isinstance(first, dict):
                generation = cast(JSONObject, first)
                url = generation.get("img") or generation.get("image_url")
                if isinstance(url, str) and url:
                    return JobSnapshot(status=JobStatus.succeeded, progress=100, final_url=url)
        return JobSnapshot(
            status=JobStatus.failed, error_message="AI Horde finished but returned no image"
        )
