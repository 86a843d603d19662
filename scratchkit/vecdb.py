"""Vector database lookups used to add context to chat requests."""

from __future__ import annotations

import abc
import json
import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from scratchkit.scratchpads.history import ChatMessage, ChatPost, ScratchpadError

log = logging.getLogger(__name__)

DEFAULT_VECDB_URL = "http://127.0.0.1:8008/v1/vdb-search"

_PROMPT_HEADER = "CONTEXT:\n"
_PROMPT_FOOTER = "\nRefer to the context to answer my next question.\n"


class VecdbError(Exception):
    """A vector database search failed."""


def _require_str(data: dict[str, Any], key: str) -> str:
    value = data[key]
    if not isinstance(value, str):
        raise TypeError(f"field {key!r} must be a string")
    return value


@dataclass
class VecdbResultRec:
    """One text fragment found by the vector database."""

    file_name: str
    text: str
    score: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VecdbResultRec:
        return cls(
            file_name=_require_str(data, "file_name"),
            text=_require_str(data, "text"),
            score=_require_str(data, "score"),
        )


@dataclass
class VecdbResult:
    """The fragments found for one query."""

    results: list[VecdbResultRec] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VecdbResult:
        records = data["results"]
        if not isinstance(records, list):
            raise TypeError("field 'results' must be a list")
        return cls([VecdbResultRec.from_dict(rec) for rec in records])


class VecdbSearch(abc.ABC):
    """Something that finds text fragments related to a query."""

    @abc.abstractmethod
    async def search(self, query: str) -> VecdbResult:
        """Return fragments related to ``query``; raise VecdbError on failure."""


class VecdbSearchHttp(VecdbSearch):
    """Searches a vector database served over HTTP."""

    def __init__(
        self, url: str = DEFAULT_VECDB_URL, account: str = "XXX", top_k: int = 3
    ) -> None:
        self.url = url
        self.account = account
        self.top_k = top_k

    async def search(self, query: str) -> VecdbResult:
        body = {"texts": [query], "account": self.account, "top_k": self.top_k}
        headers = {"Content-Type": "application/json"}
        try:
            async with httpx.AsyncClient() as client:
                resp = await client.post(self.url, content=json.dumps(body), headers=headers)
                text = resp.text
        except httpx.HTTPError as exc:
            raise VecdbError(f"Vecdb search HTTP error (1): {exc}") from exc
        try:
            data = json.loads(text)
            if not isinstance(data, list):
                raise TypeError("expected a list of results")
            results = [VecdbResult.from_dict(item) for item in data]
        except (ValueError, TypeError, KeyError) as exc:
            raise VecdbError(f"vecdb JSON problem: {exc}") from exc
        if not results:
            raise VecdbError("Vecdb search result is empty")
        return results[0]


def vecdb_resp_to_prompt(resp: VecdbResult | BaseException | None, limit_examples_cnt: int) -> str:
    """Render search results as a context message; empty text if the search failed."""
    if not isinstance(resp, VecdbResult):
        return ""
    parts = [_PROMPT_HEADER]
    parts.extend(
        f"FILENAME:\n{rec.file_name}\nTEXT:{rec.text}\n"
        for rec in resp.results[:limit_examples_cnt]
    )
    parts.append(_PROMPT_FOOTER)
    return "".join(parts)


async def embed_vecdb_results(
    vecdb_search: VecdbSearch, post: ChatPost, limit_examples_cnt: int
) -> None:
    """Search for the latest message and insert the findings just before it."""
    if not post.messages:
        raise ScratchpadError("chat post has no messages")
    resp: VecdbResult | VecdbError
    try:
        resp = await vecdb_search.search(post.messages[-1].content)
    except VecdbError as exc:
        log.info("Vecdb error: %s", exc)
        resp = exc
    content = vecdb_resp_to_prompt(resp, limit_examples_cnt)
    if content:
        post.messages.insert(len(post.messages) - 1, ChatMessage("user", content))