"""Reddit search connector (OAuth client-credentials)."""

from __future__ import annotations

import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import httpx

from ingestion.models.domain import RawNewsItem, SourceType
from ingestion.services.cooldown import CooldownGate
from ingestion.settings import Settings, get_settings
from ingestion.utils.logging import get_logger

from .base import ProviderError, RateLimited, SourceFetcher

logger = get_logger(__name__)

TOKEN_URL = "https://www.reddit.com/api/v1/access_token"
SEARCH_URL = "https://oauth.reddit.com/r/{subreddit}/search"

TOKEN_SAFETY_MARGIN_SECONDS = 60
MEME_FLAIRS = ("meme", "shitpost", "yolo", "gain", "loss", "daily discussion")
_PUBLISHED_FORMAT = "%Y%m%dT%H%M%S"
_MAX_RELEVANCE_SCORE = 10_000.0


def _ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _is_meme_post(post: Dict[str, Any]) -> bool:
    flair = (post.get("link_flair_text") or "").lower()
    if not flair:
        return False
    return any(marker in flair for marker in MEME_FLAIRS)


class RedditConnector(SourceFetcher):
    """Social-discussion feed searched across the configured subreddits."""

    source_type = SourceType.REDDIT

    def __init__(
        self,
        gate: CooldownGate,
        settings: Settings | None = None,
        *,
        monotonic: Callable[[], float] = time.monotonic,
        **kwargs: Any,
    ) -> None:
        self._settings = settings or get_settings()
        kwargs.setdefault("timeout_seconds", float(self._settings.provider_timeout_seconds))
        kwargs.setdefault("cooldown_seconds", int(self._settings.provider_cooldown_seconds))
        super().__init__(gate, **kwargs)
        self._monotonic = monotonic
        self._token: Optional[str] = None
        self._token_expires_at = 0.0
        self._token_lock = threading.Lock()

    def has_credentials(self) -> bool:
        secret = self._settings.reddit_client_secret
        return bool(self._settings.reddit_client_id) and secret is not None and bool(
            secret.get_secret_value().strip()
        )

    def _access_token(self) -> str:
        token = self._token
        if token is not None and self._monotonic() < self._token_expires_at:
            return token
        with self._token_lock:
            # Another caller may have refreshed while we waited for the lock
            if self._token is not None and self._monotonic() < self._token_expires_at:
                return self._token
            return self._refresh_token()

    def _refresh_token(self) -> str:
        cfg = self._settings
        assert cfg.reddit_client_id is not None and cfg.reddit_client_secret is not None
        logger.debug("fetch.reddit.token_refresh")
        resp = self._http().post(
            TOKEN_URL,
            data={"grant_type": "client_credentials"},
            auth=(cfg.reddit_client_id, cfg.reddit_client_secret.get_secret_value()),
            headers={"User-Agent": cfg.reddit_user_agent},
        )
        if resp.status_code == 429:
            raise self._throttled("Token endpoint rate limited (429)")
        if resp.status_code >= 400:
            raise ProviderError(self.service, f"failed to get access token: HTTP {resp.status_code}")
        payload = resp.json()
        token = str(payload["access_token"])
        expires_in = int(payload.get("expires_in", 3600))
        self._token = token
        self._token_expires_at = self._monotonic() + expires_in - TOKEN_SAFETY_MARGIN_SECONDS
        return token

    def _search(self, subreddit: str, query: str) -> List[Dict[str, Any]]:
        token = self._access_token()
        resp = self._http().get(
            SEARCH_URL.format(subreddit=subreddit),
            params={
                "q": query,
                "sort": "relevance",
                "t": "month",
                "limit": int(self._settings.reddit_limit_per_subreddit),
                "restrict_sr": "true",
            },
            headers={"Authorization": f"Bearer {token}", "User-Agent": self._settings.reddit_user_agent},
        )
        if resp.status_code == 429:
            raise self._throttled("Rate limit exceeded (429)")
        if resp.status_code >= 400:
            raise ProviderError(self.service, f"HTTP {resp.status_code}")
        children = resp.json().get("data", {}).get("children", [])
        return [child.get("data", {}) for child in children]

    def _fetch_raw(self, ticker: str, time_from: datetime, time_to: datetime) -> List[RawNewsItem]:
        window_start = _ensure_utc(time_from)
        window_end = _ensure_utc(time_to)
        items: List[RawNewsItem] = []
        seen_urls: set[str] = set()

        for subreddit in self._settings.subreddit_list():
            for query in (f"${ticker}", ticker):
                try:
                    posts = self._search(subreddit, query)
                except RateLimited:
                    raise
                except (ProviderError, httpx.HTTPError, ValueError) as exc:
                    logger.warning(
                        "fetch.reddit.search_failed",
                        extra={"subreddit": subreddit, "query": query, "error": str(exc)},
                    )
                    continue

                for post in posts:
                    item = self._post_to_item(post, ticker, window_start, window_end)
                    if item is None:
                        continue
                    if item.url is not None:
                        if item.url in seen_urls:
                            continue
                        seen_urls.add(item.url)
                    items.append(item)

        logger.info("fetch.reddit.done", extra={"ticker": ticker, "items": len(items)})
        return items

    def _post_to_item(
        self,
        post: Dict[str, Any],
        ticker: str,
        window_start: datetime,
        window_end: datetime,
    ) -> Optional[RawNewsItem]:
        try:
            created = datetime.fromtimestamp(float(post["created_utc"]), tz=timezone.utc)
            score = int(post.get("score") or 0)
        except (KeyError, TypeError, ValueError):
            return None
        if created < window_start or created >= window_end:
            return None
        if score < self._settings.reddit_min_score:
            return None
        if _is_meme_post(post):
            return None

        title = str(post.get("title") or "")[:500]
        summary = str(post.get("selftext") or "")[:2000]
        if not summary.strip():
            summary = f"Reddit post discussing {ticker}: {title}"
        try:
            return RawNewsItem(
                title=title,
                summary=summary,
                published_at=created.strftime(_PUBLISHED_FORMAT),
                source=f"r/{post.get('subreddit')}",
                source_type=self.source_type,
                url=f"https://reddit.com{post.get('permalink')}" if post.get("permalink") else None,
                relevance_score=min(max(score, 0) / _MAX_RELEVANCE_SCORE, 1.0),
                engagement_score=score,
                author=post.get("author"),
            )
        except ValueError:
            return None
