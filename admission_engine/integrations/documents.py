"""
Document generation collaborator. Offer letters are a mandatory side effect of
admitting an applicant: any failure here aborts the admit transition.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any, Dict, Optional

import httpx


class DocumentGenerationError(Exception):
    """The document service could not produce the requested document."""


class DocumentGenerator(ABC):
    @abstractmethod
    async def generate_offer_letter(self, payload: Dict[str, Any]) -> str:
        """Render an admission offer letter and return its retrievable URL."""


class HttpDocumentGenerator(DocumentGenerator):
    """
    Calls an HTTP document service: POST {base_url}/offer-letters with the payload
    as JSON, expecting a JSON body carrying the document "url".
    """

    def __init__(self, base_url: str, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    async def _post(self, client: httpx.AsyncClient, body: Dict[str, Any]) -> httpx.Response:
        return await client.post(f"{self.base_url}/offer-letters", json=body, timeout=self.timeout)

    async def generate_offer_letter(self, payload: Dict[str, Any]) -> str:
        body = {k: v.isoformat() if isinstance(v, (date, datetime)) else v for k, v in payload.items()}
        try:
            if self._client is not None:
                response = await self._post(self._client, body)
            else:
                async with httpx.AsyncClient() as client:
                    response = await self._post(client, body)
            response.raise_for_status()
            url = response.json().get("url")
        except (httpx.HTTPError, ValueError) as e:
            raise DocumentGenerationError(str(e)) from e
        if not url:
            raise DocumentGenerationError("Document service returned no url")
        return url


class UnconfiguredDocumentGenerator(DocumentGenerator):
    """Stand-in when DOCUMENT_SERVICE_URL is unset: admitting fails loudly rather than admitting without a letter."""

    async def generate_offer_letter(self, payload: Dict[str, Any]) -> str:
        raise DocumentGenerationError("No document service configured (DOCUMENT_SERVICE_URL)")
