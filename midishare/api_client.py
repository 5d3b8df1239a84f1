from __future__ import annotations

from typing import Any, List, Optional
from urllib.parse import quote

import httpx
from pydantic import TypeAdapter, ValidationError

from core.errors import NetworkError, NotFoundError
from core.models import LeaderboardKey, MidiDescriptor


# -----------------------------
# Exceptions (Business-level)
# -----------------------------
class HTTPError(NetworkError):
    """Non-2xx response from server."""

    def __init__(self, status_code: int, body: str):
        super().__init__(f"HTTP {status_code}: {body}")
        self.status_code = status_code
        self.body = body


class ContractError(NetworkError):
    """Response JSON doesn't match frozen contract / expected shape."""


_DESCRIPTOR_LIST = TypeAdapter(List[MidiDescriptor])

_TRANSPORT_ERRORS = (httpx.TimeoutException, httpx.NetworkError, httpx.ConnectError)


def _normalize_base_url(base_url: str) -> str:
    base = (base_url or "").strip()
    if not base:
        base = "http://127.0.0.1:8000"
    return base.rstrip("/")


class MidiShareClient:
    """
    Contract API client:
    - GET /api/files/stream/{id}        (player fetch capability)
    - GET /api/midis/next?exclude={id}  (player next-resource capability)
    - GET /api/midis
    - GET /api/midis/{id}
    - GET /api/midis/leaderboard
    """

    def __init__(
        self,
        *,
        base_url: str = "http://127.0.0.1:8000",
        timeout_s: float = 30.0,
        http: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = _normalize_base_url(base_url)
        self._owns_http = http is None
        self.http = http or httpx.AsyncClient(timeout=httpx.Timeout(timeout_s))

    async def aclose(self) -> None:
        if self._owns_http:
            await self.http.aclose()

    async def __aenter__(self) -> "MidiShareClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def _get(self, path: str, *, params: Optional[dict] = None) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            return await self.http.get(url, params=params)
        except _TRANSPORT_ERRORS as e:
            raise NetworkError(f"Could not reach {url}: {e}") from e

    @staticmethod
    def _json(r: httpx.Response, what: str) -> Any:
        try:
            return r.json()
        except ValueError as e:
            raise ContractError(f"Invalid JSON in {what} response: {e}") from e

    # --------- player capabilities ---------
    async def fetch(self, resource_ref: str) -> bytes:
        """Raw MIDI bytes for an id (or stored filename)."""
        r = await self._get(f"/api/files/stream/{quote(str(resource_ref), safe='')}")
        if r.status_code == 404:
            raise NotFoundError(f"No MIDI with id {resource_ref}")
        if r.status_code != 200:
            raise HTTPError(r.status_code, r.text)
        return r.content

    async def next_resource(self, exclude_ref: Optional[str]) -> Optional[MidiDescriptor]:
        params = {"exclude": exclude_ref} if exclude_ref else None
        r = await self._get("/api/midis/next", params=params)
        if r.status_code != 200:
            raise HTTPError(r.status_code, r.text)

        data = self._json(r, "/api/midis/next")
        if data is None:
            return None
        try:
            return MidiDescriptor.model_validate(data)
        except ValidationError as e:
            raise ContractError(f"/api/midis/next response violates contract: {e}") from e

    # --------- catalogue ---------
    async def list_midis(self) -> List[MidiDescriptor]:
        r = await self._get("/api/midis")
        if r.status_code != 200:
            raise HTTPError(r.status_code, r.text)
        try:
            return _DESCRIPTOR_LIST.validate_python(self._json(r, "/api/midis"))
        except ValidationError as e:
            raise ContractError(f"/api/midis response violates contract: {e}") from e

    async def get_midi(self, file_id: str) -> MidiDescriptor:
        r = await self._get(f"/api/midis/{quote(str(file_id), safe='')}")
        if r.status_code == 404:
            raise NotFoundError(f"No MIDI with id {file_id}")
        if r.status_code != 200:
            raise HTTPError(r.status_code, r.text)
        try:
            return MidiDescriptor.model_validate(self._json(r, "/api/midis/{id}"))
        except ValidationError as e:
            raise ContractError(f"/api/midis/{{id}} response violates contract: {e}") from e

    async def leaderboard(
        self, *, by: LeaderboardKey = LeaderboardKey.downloads, limit: int = 10
    ) -> List[MidiDescriptor]:
        r = await self._get("/api/midis/leaderboard", params={"by": by.value, "limit": int(limit)})
        if r.status_code != 200:
            raise HTTPError(r.status_code, r.text)
        try:
            return _DESCRIPTOR_LIST.validate_python(self._json(r, "/api/midis/leaderboard"))
        except ValidationError as e:
            raise ContractError(f"/api/midis/leaderboard response violates contract: {e}") from e
