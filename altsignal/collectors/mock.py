"""Mock feeds that generate plausible raw records without any network calls.

Used by ``--mock`` runs and tests.  Each feed speaks the same raw-record
dialect as its real counterpart so the adapters score them unchanged.
"""

from __future__ import annotations

import logging
import random
from datetime import timedelta
from typing import Any

from altsignal.utils import utc_now

logger = logging.getLogger(__name__)

_SYMBOLS = ["AAPL", "MSFT", "NVDA", "TSLA", "AMZN", "META", "GOOG", "AMD", "PLTR", "JPM"]

_REDDIT_TEMPLATES = [
    ("wallstreetbets", "{sym} calls printing, earnings beat incoming", "Strong guidance and record revenue. Bullish into the print."),
    ("stocks", "Is {sym} overvalued after this rally?", "Growth is slowing and margins look weak. Might sell some here."),
    ("investing", "{sym} dividend and buyback update", "Management raised the dividend and announced a new buyback program."),
    ("wallstreetbets", "{sym} puts, this is going to crash", "Terrible guidance, bearish setup, expecting a big drop."),
    ("stocks", "{sym} analyst upgrade today", "Upgrade to overweight with a higher price target. Good news for longs."),
]

_TWEET_TEMPLATES = [
    "${sym} breaking out on heavy volume, bullish",
    "Just trimmed my ${sym} position, guidance looks weak",
    "${sym} earnings beat, revenue up strong. Great quarter",
    "Massive put volume on ${sym} today. Something is off, bearish",
    "${sym} upgrade from analysts, rally continues",
]

_INSIDERS = [
    ("Jane Cooper", "Chief Executive Officer", "Officer"),
    ("Robert Fox", "Chief Financial Officer", "Officer"),
    ("Esther Howard", "Director", "Director"),
    ("Cameron Williamson", "SVP Operations", "Officer"),
    ("Brooklyn Simmons", "", "10% Owner"),
]

_LEGISLATORS = [
    ("Sen. Alex Morgan", "Senate", "Democrat"),
    ("Rep. Jordan Blake", "House", "Republican"),
    ("Rep. Casey Rivera", "House", "Democrat"),
    ("Sen. Taylor Brooks (Chair)", "Senate", "Republican"),
]
_AMOUNT_RANGES = ["$1,001 - $15,000", "$15,001 - $50,000", "$50,001 - $100,000", "$250,001 - $500,000", "$1,000,001 - $5,000,000"]
_INDUSTRIES = ["Technology", "Banking", "Pharmaceutical", "Retail", "Energy"]

_NEWS_TEMPLATES = [
    ("Reuters", "{sym} beats quarterly earnings estimates, raises guidance", "Revenue and EPS topped forecasts as demand stayed strong."),
    ("Bloomberg", "{sym} in talks over acquisition of smaller rival", "The deal would be the company's largest merger to date."),
    ("CNBC", "Breaking: FDA opens investigation tied to {sym} supplier", "Regulators launched an investigation; shares slipped in early trade."),
    ("MarketWatch", "Analyst downgrade weighs on {sym}", "The downgrade cites weak outlook and slowing growth."),
    ("Yahoo Finance", "{sym} announces product launch event", "The company teased a new product launch next month."),
]


class _MockFeed:
    def __init__(self, name: str, *, seed: int | None = None, max_records: int = 12) -> None:
        self.name = name
        self._rng = random.Random(seed)
        self._max_records = max_records

    def _symbol(self, symbol: str | None) -> str:
        return symbol.upper() if symbol else self._rng.choice(_SYMBOLS)

    def _count(self) -> int:
        return self._rng.randint(max(1, self._max_records // 3), self._max_records)


class MockRedditFeed(_MockFeed):
    async def fetch(self, symbol: str | None, options: dict[str, Any]) -> list[dict[str, Any]]:
        now = utc_now()
        records = []
        for i in range(self._count()):
            sym = self._symbol(symbol)
            sub, title, body = self._rng.choice(_REDDIT_TEMPLATES)
            records.append({
                "id": f"mock_{sym}_{self._rng.getrandbits(32):08x}",
                "title": title.format(sym=sym),
                "selftext": body,
                "author": f"user_{self._rng.randint(1000, 9999)}",
                "subreddit": sub,
                "score": self._rng.randint(5, 4000),
                "num_comments": self._rng.randint(0, 600),
                "total_awards_received": self._rng.randint(0, 8),
                "created_utc": (now - timedelta(minutes=self._rng.randint(1, 600))).timestamp(),
                "permalink": f"/r/{sub}/comments/mock{i}",
            })
        logger.debug("[mock] %s generated %d reddit posts", self.name, len(records))
        return records


class MockTwitterFeed(_MockFeed):
    async def fetch(self, symbol: str | None, options: dict[str, Any]) -> list[dict[str, Any]]:
        now = utc_now()
        records = []
        for _ in range(self._count()):
            sym = self._symbol(symbol)
            records.append({
                "id": str(self._rng.getrandbits(48)),
                "text": self._rng.choice(_TWEET_TEMPLATES).format(sym=sym),
                "created_at": (now - timedelta(minutes=self._rng.randint(1, 300))).isoformat(),
                "user": {
                    "username": f"trader{self._rng.randint(1, 999)}",
                    "verified": self._rng.random() < 0.2,
                    "followers_count": self._rng.randint(50, 500_000),
                },
                "public_metrics": {
                    "like_count": self._rng.randint(0, 2000),
                    "retweet_count": self._rng.randint(0, 400),
                    "reply_count": self._rng.randint(0, 150),
                    "quote_count": self._rng.randint(0, 50),
                },
            })
        return records


class MockInsiderFeed(_MockFeed):
    async def fetch(self, symbol: str | None, options: dict[str, Any]) -> list[dict[str, Any]]:
        now = utc_now()
        records = []
        for _ in range(self._rng.randint(0, 4)):
            name, title, relationship = self._rng.choice(_INSIDERS)
            shares = self._rng.randint(500, 200_000)
            price = round(self._rng.uniform(20, 900), 2)
            tx_date = now - timedelta(days=self._rng.randint(1, 60))
            records.append({
                "symbol": self._symbol(symbol),
                "insider_name": name,
                "insider_title": title,
                "relationship": relationship,
                "transaction_type": self._rng.choice(["P", "S", "S"]),
                "shares": shares,
                "price": price,
                "value": round(shares * price, 2),
                "ownership": self._rng.choice(["D", "D", "I"]),
                "percent_owned": round(self._rng.uniform(0.01, 12), 2),
                "transaction_date": tx_date.isoformat(),
                "filing_date": (tx_date + timedelta(days=self._rng.randint(1, 4))).isoformat(),
                "volume_ratio": round(self._rng.uniform(0.5, 4.0), 2),
                "source": "sec",
            })
        return records


class MockLegislatorFeed(_MockFeed):
    async def fetch(self, symbol: str | None, options: dict[str, Any]) -> list[dict[str, Any]]:
        now = utc_now()
        records = []
        for _ in range(self._rng.randint(0, 3)):
            rep, chamber, party = self._rng.choice(_LEGISLATORS)
            tx_date = now - timedelta(days=self._rng.randint(3, 90))
            records.append({
                "symbol": self._symbol(symbol),
                "representative": rep,
                "chamber": chamber,
                "party": party,
                "transaction_type": self._rng.choice(["Purchase", "Sale (Full)", "Sale (Partial)"]),
                "amount": self._rng.choice(_AMOUNT_RANGES),
                "industry": self._rng.choice(_INDUSTRIES),
                "transaction_date": tx_date.isoformat(),
                "filing_date": (tx_date + timedelta(days=self._rng.randint(5, 50))).isoformat(),
                "source": "quiver",
            })
        return records


class MockNewsFeed(_MockFeed):
    async def fetch(self, symbol: str | None, options: dict[str, Any]) -> list[dict[str, Any]]:
        now = utc_now()
        records = []
        for _ in range(self._count()):
            sym = self._symbol(symbol)
            outlet, title, summary = self._rng.choice(_NEWS_TEMPLATES)
            records.append({
                "title": title.format(sym=sym),
                "summary": summary,
                "url": f"https://news.example.com/{sym.lower()}/{self._rng.getrandbits(32):08x}",
                "source": outlet,
                "published": (now - timedelta(minutes=self._rng.randint(5, 1440))).isoformat(),
                "symbols": [sym],
            })
        return records
