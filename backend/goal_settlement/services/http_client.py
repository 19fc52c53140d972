"""JSON-over-HTTP helper shared by the prover, contract and vault gateways."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

import httpx

from ..errors import NetworkTimeout, TransportError
from ..logger import get_logger

logger = get_logger(__name__)

RETRYABLE_STATUS = {429, 500, 502, 503, 504}


@dataclass
class JsonResponse:
    """Status code plus decoded JSON body (empty dict when the body was not JSON)."""

    status_code: int
    payload: dict[str, Any]
    text: str

    @property
    def ok(self) -> bool:
        return self.status_code < 400


def _join_message(value: Any) -> str:
    if isinstance(value, list):
        return ", ".join(str(item) for item in value)
    return str(value)


def extract_error(
    payload: dict[str, Any],
    *,
    fallback_code: str,
    fallback_message: str,
) -> tuple[str, str]:
    """
    Pull a structured `{code, message}` out of an error body.

    Accepts `{"error": {"code", "message"}}`, `{"error": "text"}` and a
    top-level `{"code", "message"}`; falls back to the given defaults.
    """
    error = payload.get("error")
    code: Any = None
    message: Any = None

    if isinstance(error, dict):
        code = error.get("code")
        message = error.get("message")
    elif isinstance(error, str) and error.strip():
        message = error

    if code is None:
        code = payload.get("code")
    if message is None:
        message = payload.get("message")

    code_text = str(code).strip() if code else fallback_code
    message_text = _join_message(message).strip() if message else fallback_message
    return code_text, message_text


class JsonHttpClient:
    """Thin async JSON client with explicit per-call timeouts and bounded retries."""

    def __init__(
        self,
        *,
        base_url: str,
        timeout_seconds: float,
        max_retries: int = 0,
        backoff_seconds: float = 0.5,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.transport = transport

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
        retry: bool = False,
    ) -> JsonResponse:
        """
        Send one request and decode the body.

        Only callers passing `retry=True` get retried; state-mutating calls
        must not be, since a retried write could apply twice.
        """
        url = f"{self.base_url}{path}"
        attempts = (self.max_retries if retry else 0) + 1
        effective_timeout = timeout if timeout is not None else self.timeout_seconds

        for attempt in range(attempts):
            last_attempt = attempt == attempts - 1
            try:
                async with httpx.AsyncClient(
                    timeout=effective_timeout,
                    transport=self.transport,
                ) as client:
                    response = await client.request(method, url, json=json, params=params)
            except httpx.TimeoutException as exc:
                if not last_attempt:
                    await asyncio.sleep(self.backoff_seconds * (2**attempt))
                    continue
                logger.warning("http_timeout", method=method, path=path, timeout=effective_timeout)
                raise NetworkTimeout(f"{method} {path} timed out after {effective_timeout}s") from exc
            except httpx.TransportError as exc:
                if not last_attempt:
                    await asyncio.sleep(self.backoff_seconds * (2**attempt))
                    continue
                logger.warning("http_transport_error", method=method, path=path, error=str(exc))
                raise TransportError(f"{method} {path} failed: {exc}") from exc

            if response.status_code in RETRYABLE_STATUS and not last_attempt:
                await asyncio.sleep(self.backoff_seconds * (2**attempt))
                continue

            return self._decode(response, method, path)

        # range(attempts) is never empty
        raise TransportError(f"{method} {path} failed")

    def _decode(self, response: httpx.Response, method: str, path: str) -> JsonResponse:
        try:
            payload = response.json()
        except ValueError:
            payload = None

        if not isinstance(payload, dict):
            if response.status_code < 400:
                raise TransportError(f"{method} {path} returned a non-JSON body")
            payload = {}

        return JsonResponse(
            status_code=response.status_code,
            payload=payload,
            text=response.text,
        )
