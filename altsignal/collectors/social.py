"""Social-chatter adapters (reddit, twitter).

Both turn raw feed records into :class:`SocialPost` points with a
quality-derived confidence, then summarize the batch into sentiment trend,
mention volume and a trending-based significance.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Callable, Sequence

from altsignal.collectors.feeds import FeedClient
from altsignal.collectors.scoring import (
    categorize_volume,
    extract_symbols,
    keyword_sentiment,
    mentions_per_hour,
    summarize,
    trend_from_scores,
)
from altsignal.collectors.types import SOCIAL, BatchSummary, Sentiment, SocialPost
from altsignal.utils import clamp, to_datetime

logger = logging.getLogger(__name__)

SentimentScorer = Callable[[str], Sentiment]


def _int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _with_target(symbols: list[str], target: str | None) -> tuple[str, ...]:
    if target and target.upper() not in symbols:
        return (target.upper(), *symbols)
    return tuple(symbols)


def _social_summary(
    posts: Sequence[SocialPost],
    *,
    velocity_threshold: float,
    engagement_threshold: int,
    volume_high: int,
    volume_medium: int,
    trending_significance: float,
    quiet_significance: float,
) -> BatchSummary:
    engagement = sum(p.engagement for p in posts)
    trending = mentions_per_hour(posts) > velocity_threshold or engagement > engagement_threshold
    return summarize(
        posts,
        sentiment=trend_from_scores([p.post_sentiment.score for p in posts]),
        volume=categorize_volume(len(posts), high=volume_high, medium=volume_medium),
        significance=trending_significance if trending else quiet_significance,
    )


# ── Reddit ────────────────────────────────────────────────────────────

def reddit_confidence(score: int, comments: int, awards: int, text: str, has_symbols: bool) -> float:
    confidence = 0.3
    confidence += min(0.3, score / 1000)
    confidence += min(0.2, comments / 100)
    confidence += min(0.1, awards / 10)
    if len(text) > 100:
        confidence += 0.1
    if has_symbols:
        confidence += 0.1
    return clamp(confidence, 0.0, 1.0)


class RedditAdapter:
    kind = SOCIAL

    def __init__(self, feed: FeedClient, scorer: SentimentScorer = keyword_sentiment) -> None:
        self._feed = feed
        self._scorer = scorer

    async def fetch(self, symbol: str | None, options: dict[str, Any]) -> list[SocialPost]:
        records = await self._feed.fetch(symbol, options)
        posts: dict[str, SocialPost] = {}
        for rec in records:
            post = self._to_post(rec, symbol)
            if post is not None:
                posts.setdefault(post.post_id, post)
        return list(posts.values())

    def _to_post(self, rec: dict[str, Any], symbol: str | None) -> SocialPost | None:
        post_id = str(rec.get("id") or "")
        title = rec.get("title") or ""
        body = rec.get("selftext") or rec.get("body") or ""
        text = f"{title}\n\n{body}".strip()
        if not post_id or not text:
            return None

        score = _int(rec.get("score", rec.get("ups")))
        comments = _int(rec.get("num_comments"))
        awards = _int(rec.get("total_awards_received"))
        mentioned = extract_symbols(text)
        permalink = rec.get("permalink") or ""

        return SocialPost(
            timestamp=to_datetime(rec.get("created_utc")),
            source="reddit",
            confidence=reddit_confidence(score, comments, awards, text, bool(mentioned)),
            metadata={
                "subreddit": rec.get("subreddit", ""),
                "score": score,
                "comments": comments,
                "awards": awards,
                "url": f"https://www.reddit.com{permalink}" if permalink.startswith("/") else permalink,
            },
            post_id=post_id,
            platform="reddit",
            author=rec.get("author") or "[deleted]",
            text=text[:4000],
            post_sentiment=self._scorer(text),
            symbols=_with_target(mentioned, symbol),
            engagement=score + comments + awards,
            reach=max(score, 0) * 10,
        )

    def summarize(self, items: Sequence[SocialPost]) -> BatchSummary:
        return _social_summary(
            items,
            velocity_threshold=5,
            engagement_threshold=1000,
            volume_high=50,
            volume_medium=20,
            trending_significance=0.8,
            quiet_significance=0.4,
        )


# ── Twitter ───────────────────────────────────────────────────────────

def twitter_confidence(
    verified: bool, followers: int, engagement: int, text: str, has_symbols: bool
) -> float:
    confidence = 0.2
    if verified:
        confidence += 0.2
    if followers > 0:
        confidence += min(0.2, math.log10(followers) / 10)
    confidence += min(0.2, engagement / 1000)
    if len(text) > 50:
        confidence += 0.1
    if has_symbols:
        confidence += 0.1
    return clamp(confidence, 0.0, 1.0)


class TwitterAdapter:
    kind = SOCIAL

    def __init__(self, feed: FeedClient, scorer: SentimentScorer = keyword_sentiment) -> None:
        self._feed = feed
        self._scorer = scorer

    async def fetch(self, symbol: str | None, options: dict[str, Any]) -> list[SocialPost]:
        records = await self._feed.fetch(symbol, options)
        posts: dict[str, SocialPost] = {}
        for rec in records:
            post = self._to_post(rec, symbol)
            if post is not None:
                posts.setdefault(post.post_id, post)
        return list(posts.values())

    def _to_post(self, rec: dict[str, Any], symbol: str | None) -> SocialPost | None:
        post_id = str(rec.get("id") or "")
        text = (rec.get("text") or "").strip()
        if not post_id or not text:
            return None

        metrics = rec.get("public_metrics") or rec
        user = rec.get("user") or {}
        followers = _int(user.get("followers_count", rec.get("followers_count", rec.get("followers"))))
        verified = bool(user.get("verified", rec.get("verified", False)))
        likes = _int(metrics.get("like_count"))
        retweets = _int(metrics.get("retweet_count"))
        replies = _int(metrics.get("reply_count"))
        quotes = _int(metrics.get("quote_count"))
        engagement = likes + retweets + replies + quotes
        mentioned = extract_symbols(text)

        return SocialPost(
            timestamp=to_datetime(rec.get("created_at")),
            source="twitter",
            confidence=twitter_confidence(verified, followers, engagement, text, bool(mentioned)),
            metadata={
                "likes": likes,
                "retweets": retweets,
                "replies": replies,
                "verified": verified,
                "followers": followers,
            },
            post_id=post_id,
            platform="twitter",
            author=user.get("username") or rec.get("username") or rec.get("author_id") or "unknown",
            text=text,
            post_sentiment=self._scorer(text),
            symbols=_with_target(mentioned, symbol),
            engagement=engagement,
            reach=followers,
        )

    def summarize(self, items: Sequence[SocialPost]) -> BatchSummary:
        return _social_summary(
            items,
            velocity_threshold=10,
            engagement_threshold=5000,
            volume_high=100,
            volume_medium=30,
            trending_significance=0.9,
            quiet_significance=0.5,
        )
