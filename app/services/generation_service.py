from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

import httpx

from app.errors import GenerationError
from app.logging_config import get_logger
from app.schemas.session import ServiceKind

logger = get_logger("generation_service")

GENERATION_TIMEOUT_SECONDS = 30.0

RESULT_FIELDS = {
    ServiceKind.IMAGE: "imageUrl",
    ServiceKind.VIDEO: "videoUrl",
    ServiceKind.INFO: "response",
}

FALLBACK_VALUES = {
    ServiceKind.IMAGE: "https://via.placeholder.com/400x400?text=Error+Generating+Image",
    ServiceKind.VIDEO: "https://sample-videos.com/zip/10/mp4/SampleVideo_1280x720_1mb.mp4",
    ServiceKind.INFO: "Sorry, I could not process your request right now. Please try again later.",
}


@dataclass(frozen=True)
class GenerationResult:
    kind: ServiceKind
    value: str  # image URL, video URL or info text
    fallback: bool = False
    raw: dict = field(default_factory=dict)


def fallback_result(kind: ServiceKind) -> GenerationResult:
    return GenerationResult(kind=kind, value=FALLBACK_VALUES[kind], fallback=True)


class GenerationService:
    """Client for the external image/video/info generation endpoints."""

    def __init__(
        self,
        endpoints: Mapping[ServiceKind, str],
        api_token: str = "",
        timeout: float = GENERATION_TIMEOUT_SECONDS,
    ):
        self.endpoints = dict(endpoints)
        self.api_token = api_token
        self.timeout = timeout

    def invoke(self, kind: ServiceKind, payload: dict[str, Any]) -> GenerationResult:
        """Call the service for `kind`. Failures degrade to the fixed fallback result, never raise."""
        kind = ServiceKind(kind)
        try:
            data = self._request(kind, payload)
            value = data.get(RESULT_FIELDS[kind])
            if not isinstance(value, str) or not value.strip():
                raise GenerationError(kind.value, f"response has no {RESULT_FIELDS[kind]}")
            return GenerationResult(kind=kind, value=value, raw=data)
        except GenerationError as e:
            logger.error(
                f"Generation call failed, using fallback: {e}",
                extra={"context": {"service": kind.value}},
            )
            return fallback_result(kind)

    def _request(self, kind: ServiceKind, payload: dict[str, Any]) -> dict:
        url: Optional[str] = self.endpoints.get(kind)
        if not url:
            raise GenerationError(kind.value, "endpoint not configured")

        logger.debug(f"Generation request: service={kind.value}, url={url}")
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(
                    url,
                    headers={
                        "Authorization": f"Bearer {self.api_token}",
                        "Content-Type": "application/json",
                    },
                    json=payload,
                )
        except httpx.TimeoutException as e:
            raise GenerationError(kind.value, f"timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise GenerationError(kind.value, str(e)) from e

        logger.debug(f"Generation response status: {response.status_code}")

        if not 200 <= response.status_code < 300:
            raise GenerationError(kind.value, f"status {response.status_code} - {response.text[:200]}")

        try:
            data = response.json()
        except ValueError as e:
            raise GenerationError(kind.value, "response is not JSON") from e
        if not isinstance(data, dict):
            raise GenerationError(kind.value, "response is not a JSON object")
        return data
