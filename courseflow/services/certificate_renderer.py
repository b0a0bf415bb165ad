"""Certificate rendering collaborators.

The renderer turns a frozen completion snapshot into a durable document
URL.  Any failure surfaces as RenderingFailed so the issuer can leave the
enrollment unissued and the caller can retry.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Protocol

import httpx

from courseflow.core.errors import RenderingFailed
from courseflow.models.enrollment import CompletionSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RenderRequest:
    certificate_id: str
    student_name: str
    course_title: str
    instructor_name: str
    issued_at: int
    snapshot: CompletionSnapshot


class CertificateRenderer(Protocol):
    async def render(self, request: RenderRequest) -> str: ...


class HttpCertificateRenderer:
    """POSTs the render request as JSON and expects ``{"url": "..."}`` back."""

    def __init__(self, endpoint: str, *, timeout: float = 10.0) -> None:
        self._endpoint = endpoint
        self._timeout = timeout

    async def render(self, request: RenderRequest) -> str:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(self._endpoint, json=asdict(request))
                response.raise_for_status()
                body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(
                "Certificate render failed for %s: %s",
                request.certificate_id,
                exc,
                extra={"certificate_id": request.certificate_id},
            )
            raise RenderingFailed("certificate renderer unavailable") from exc

        url = body.get("url") if isinstance(body, dict) else None
        if not url:
            raise RenderingFailed("certificate renderer returned no url")
        return url


class LocalCertificateRenderer:
    """Deterministic URL under CERTIFICATE_BASE_URL; used when no renderer is set."""

    def __init__(self, base_url: str) -> None:
        self._base_url = base_url.rstrip("/")

    async def render(self, request: RenderRequest) -> str:
        return f"{self._base_url}/{request.certificate_id}.pdf"
