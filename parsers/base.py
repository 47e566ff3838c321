import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Tuple

import aiohttp

from ingest.errors import FetchError
from ingest.models import FeedMeta

# Un item brut: cles synonymes (content, content_snippet, summary, description,
# creator, author, guid, link, title, pub_date, categories), normalise ensuite
# par ingest.rss.normalize_item.
RawItem = Dict[str, Any]


async def http_get(session: aiohttp.ClientSession, url: str,
                   headers: Dict[str, str], timeout: float) -> bytes:
    """GET ``url`` and return the (decompressed) body, or raise FetchError."""
    try:
        async with session.get(
            url,
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=timeout),
            allow_redirects=True,
        ) as resp:
            if resp.status >= 400:
                raise FetchError(f"Status code {resp.status}")
            return await resp.read()
    except asyncio.TimeoutError as e:
        raise FetchError(f"Request timeout after {timeout:g}s") from e
    except aiohttp.ClientError as e:
        raise FetchError(str(e) or e.__class__.__name__) from e


class ParseStrategy(ABC):
    name: str

    @abstractmethod
    async def parse(self, session: aiohttp.ClientSession, url: str) -> Tuple[FeedMeta, List[RawItem]]:
        ...
