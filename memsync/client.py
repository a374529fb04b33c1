"""
Remote memory service client.

``MemoryClient`` is the narrow capability the rest of the package depends
on: one method per remote operation, each taking the per-attempt timeout the
call executor enforces. ``HttpMemoryClient`` is the httpx implementation.
"""

import json
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

import httpx

DOCUMENTS_PATH = "/v3/documents"
SEARCH_PATH = "/v4/search"
PROFILE_PATH = "/v4/profile"


@dataclass(frozen=True)
class Document:
    content: str
    container_tag: str
    custom_id: str
    metadata: dict[str, str] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "containerTag": self.container_tag,
            "customId": self.custom_id,
            "metadata": dict(self.metadata),
        }


class MemoryClient(Protocol):
    def add(self, document: Document, *, timeout: float) -> dict[str, Any]: ...

    def search(
        self,
        query: str,
        *,
        container_tag: str,
        timeout: float,
        limit: int = 10,
        threshold: float = 0.4,
    ) -> dict[str, Any]: ...

    def profile(
        self,
        *,
        container_tag: str,
        timeout: float,
        query: str | None = None,
        threshold: float = 0.4,
    ) -> dict[str, Any]: ...


class HttpMemoryClient:
    def __init__(
        self,
        api_url: str,
        api_key: str,
        transport: httpx.BaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._clock = clock
        self._http = httpx.Client(
            base_url=api_url.rstrip("/"),
            headers={"Authorization": f"Bearer {api_key}"},
            trust_env=False,
            follow_redirects=False,
            transport=transport,
        )

    def add(self, document: Document, *, timeout: float) -> dict[str, Any]:
        return self._post(DOCUMENTS_PATH, document.to_payload(), timeout)

    def search(
        self,
        query: str,
        *,
        container_tag: str,
        timeout: float,
        limit: int = 10,
        threshold: float = 0.4,
    ) -> dict[str, Any]:
        payload = {
            "q": query,
            "containerTag": container_tag,
            "searchMode": "hybrid",
            "limit": max(1, min(int(limit), 50)),
            "threshold": threshold,
            "rerank": True,
        }
        return self._post(SEARCH_PATH, payload, timeout)

    def profile(
        self,
        *,
        container_tag: str,
        timeout: float,
        query: str | None = None,
        threshold: float = 0.4,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"containerTag": container_tag}
        if query:
            payload["q"] = query
            payload["threshold"] = threshold
        return self._post(PROFILE_PATH, payload, timeout)

    def _post(self, path: str, payload: dict[str, Any], timeout: float) -> dict[str, Any]:
        # httpx applies the timeout per connect/read/write step; the deadline
        # bounds the whole attempt.
        deadline = self._clock() + timeout
        with self._http.stream("POST", path, json=payload, timeout=timeout) as response:
            response.raise_for_status()
            body = bytearray()
            for chunk in response.iter_bytes():
                body.extend(chunk)
                if self._clock() > deadline:
                    raise httpx.ReadTimeout(f"response not complete within {timeout:g}s", request=response.request)
        if not body:
            return {}
        data = json.loads(body)
        return data if isinstance(data, dict) else {"result": data}

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "HttpMemoryClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
