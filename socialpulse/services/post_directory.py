"""
Read-only lookup of post metadata held by the external content service.

Only used to decorate results (content text, publish time) and to derive
content features for engagement prediction, so lookup failures are logged
by callers and the decoration is skipped.
"""
import re
from datetime import datetime
from typing import Dict, Iterable, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator

from socialpulse.utils.dates import ensure_utc
from socialpulse.utils.logger import logger

HASHTAG_RE = re.compile(r"#\w+")


class PostDetails(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    post_id: str = Field(alias="id")
    content: str = ""
    published_at: Optional[datetime] = Field(None, alias="publishedAt")
    platform: Optional[str] = None
    platform_post_id: Optional[str] = Field(None, alias="platformPostId")
    media_count: int = Field(0, alias="mediaCount")
    content_type: Optional[str] = Field(None, alias="contentType")

    @field_validator("published_at")
    @classmethod
    def _utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v) if v else v

    @property
    def hashtag_count(self) -> int:
        return len(HASHTAG_RE.findall(self.content))


class HttpPostDirectory:
    def __init__(self, base_url: str, api_key: Optional[str] = None, timeout: float = 5.0, batch_size: int = 100):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.batch_size = max(1, batch_size)
        self.headers = {"Accept": "application/json"}
        if api_key:
            self.headers["Authorization"] = f"Bearer {api_key}"

    async def get_post(self, post_id: str) -> Optional[PostDetails]:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            res = await client.get(f"{self.base_url}/posts/{post_id}", headers=self.headers)
            if res.status_code == 404:
                return None
            res.raise_for_status()
            return PostDetails.model_validate(res.json())

    async def get_posts(self, post_ids: Iterable[str]) -> Dict[str, PostDetails]:
        ids = sorted({p for p in post_ids if p})
        if not ids:
            return {}

        posts: Dict[str, PostDetails] = {}
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            # Chunked so the query string stays short
            for i in range(0, len(ids), self.batch_size):
                res = await client.get(
                    f"{self.base_url}/posts",
                    headers=self.headers,
                    params={"ids": ",".join(ids[i:i + self.batch_size])},
                )
                res.raise_for_status()
                payload = res.json()

                # Accept either a bare list or {"posts": [...]}
                items: List[dict] = payload.get("posts", []) if isinstance(payload, dict) else payload
                for item in items:
                    post = PostDetails.model_validate(item)
                    posts[post.post_id] = post
        return posts


async def lookup_posts(directory, post_ids: Iterable[str]) -> Dict[str, PostDetails]:
    """Batch lookup that never fails the caller: errors are logged and yield {}."""
    if directory is None:
        return {}
    try:
        return await directory.get_posts(post_ids)
    except (httpx.HTTPError, ValueError) as e:
        logger.warning(f"Post lookup failed, continuing without post details: {e}")
        return {}
