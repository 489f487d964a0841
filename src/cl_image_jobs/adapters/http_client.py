"""httpx helpers shared by the provider adapters.

Maps transport failures and HTTP error statuses onto AdapterError so that
every adapter reports provider trouble the same way:

- connect/read timeouts, network errors, 408, 429 and 5xx are transient;
- any other 4xx (bad credentials, malformed payload) is fatal.
"""

from collections.abc import Collection
from typing import cast

import httpx
from loguru import logger

from ..common.errors import AdapterError

TRANSIENT_STATUSES = frozenset({408, 425, 429})

JSONObject = dict[str, object]


def is_transient_status(status_code: int) -> bool:
    return status_code in TRANSIENT_STATUSES or status_code >= 500


def error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(payload, dict):
        data = cast(JSONObject, payload)
        for key in ("detail", "message", "error"):
            if data.get(key):
                return str(data[key])[:200]
    return response.text[:200]


async def send(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    model_id: str,
    accept: Collection[int] = (),
    **kwargs: object,
) -> httpx.Response:
    """Send a request, raising AdapterError for failures not listed in `accept`.

    Raises:
        AdapterError: transport failure or unexpected HTTP error status.
    """
    try:
        response = await client.request(method, url, **kwargs)  # pyright: ignore[reportArgumentType]
    except httpx.TimeoutException as exc:
        raise AdapterError(f"{model_id}: request timed out ({method} {url})", model_id=model_id) from exc
    except httpx.TransportError as exc:
        raise AdapterError(f"{model_id}: transport error: {exc}", model_id=model_id) from exc

    if response.status_code >= 400 and response.status_code not in accept:
        transient = is_transient_status(response.status_code)
        logger.warning(
            f"{model_id}: {method} {url} -> {response.status_code} "
            + f"({'transient' if transient else 'fatal'})"
        )
        raise AdapterError(
            f"{model_id}: provider returned {response.status_code}: {error_detail(response)}",
            transient=transient,
            model_id=model_id,
        )
    return response


def json_object(response: httpx.Response, model_id: str) -> JSONObject:
    """Decode a JSON object body; anything else is a transient provider fault."""
    try:
        payload = response.json()
    except ValueError as exc:
        raise AdapterError(f"{model_id}: response is not JSON", model_id=model_id) from exc
    if not isinstance(payload, dict):
        raise AdapterError(f"{model_id}: unexpected response shape", model_id=model_id)
    return cast(JSONObject, payload)
