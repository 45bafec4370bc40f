from __future__ import annotations

import json
from typing import Any

from timboard.models import COLLAB, HOLD_FIX, HOLD_FIX_TYPES, MUSIC, PERSONAL, PERSONAL_SUB_CATEGORIES, STOCK


SYSTEM_PROMPT = """You are an AI assistant for a Music A&R scheduler.
Classify one calendar event into exactly one category and return only JSON.

Categories:
- PERSONAL: personal life, gym, finance, tax, rent, insurance, private appointments.
  Sub-categories for PERSONAL:
  - YOUTUBE: keywords like "브라보팝" (Bravo Pop).
  - AUTOMATION: keywords like "APP", "테스트" (test), "AI", "Code".
  - GENERAL: lessons (레슨), tax (세무사), loans/debt (대출, 빌리, 갚), general life.
- COLLAB: music collaboration, co-writing, sessions, topline, track production.
- HOLD_FIX: song hold, fix, release, publishing deals.
- STOCK: stock market, earnings calls, IPO, financial news, dividends.
  Keywords: "주식", "증권", "주가", "실적", "매출", "배당", "IPO", "Ticker", "NASDAQ",
  "KOSPI", "KOSDAQ", "MSCI", "TSMC", "엔비디아".
- MUSIC: general music work, meetings, listening sessions, A&R work (default for work items).

If the event is music work and has no explicit stock/finance terms, choose MUSIC.

Schema:
{
  "category": "PERSONAL | COLLAB | HOLD_FIX | STOCK | MUSIC",
  "subCategory": "YOUTUBE | AUTOMATION | GENERAL (PERSONAL only)",
  "summary": "concise summary, max 10 words",
  "ticker": "stock ticker if applicable",
  "artist": "target artist if applicable",
  "holdFixType": "HOLD | FIX | RELEASE (HOLD_FIX only)",
  "demoName": "song or demo name if applicable",
  "trackProducer": "track producer if applicable",
  "topLiner": "top liner if applicable",
  "publishingInfo": "publisher if applicable",
  "writers": [{"name": "writer name", "percentage": 50}]
}
"""

KNOWN_CATEGORIES = {PERSONAL, COLLAB, HOLD_FIX, STOCK, MUSIC}

# response key -> normalized hint key
HINT_FIELDS = {
    "summary": "summary",
    "ticker": "ticker",
    "artist": "artist",
    "targetArtist": "artist",
    "demoName": "demo_name",
    "songName": "demo_name",
    "trackName": "track_name",
    "trackProducer": "track_producer",
    "topLiner": "top_liner",
    "publishingInfo": "publishing_info",
    "notes": "notes",
}


def build_messages(title: str, description: str) -> list[dict[str, str]]:
    payload = {"title": title, "description": description}
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": json.dumps(payload, ensure_ascii=False)},
    ]


def _normalize_writers(raw_writers: Any) -> list[dict[str, Any]]:
    if not isinstance(raw_writers, list):
        return []
    writers: list[dict[str, Any]] = []
    for item in raw_writers:
        if isinstance(item, str):
            name, share = item.strip(), None
        elif isinstance(item, dict):
            name = str(item.get("name", "")).strip()
            share = item.get("percentage", item.get("split"))
        else:
            continue
        if not name:
            continue
        try:
            percentage = float(share) if share is not None else None
        except (TypeError, ValueError):
            percentage = None
        writers.append({"name": name, "percentage": percentage})
    return writers


def normalize_classification(raw: dict[str, Any] | None) -> dict[str, Any]:
    if not isinstance(raw, dict):
        return {}
    category = str(raw.get("category", "")).strip().upper()
    normalized: dict[str, Any] = {"category": category if category in KNOWN_CATEGORIES else None}

    sub_category = str(raw.get("subCategory", raw.get("sub_category", "")) or "").strip().upper()
    if normalized["category"] == PERSONAL and sub_category in PERSONAL_SUB_CATEGORIES:
        normalized["sub_category"] = sub_category

    for source_key, target_key in HINT_FIELDS.items():
        value = raw.get(source_key)
        if value is None or target_key in normalized:
            continue
        text = str(value).strip()
        if text:
            normalized[target_key] = text

    hold_fix_type = str(raw.get("holdFixType", "") or "").strip().upper()
    if hold_fix_type in HOLD_FIX_TYPES:
        normalized["hold_fix_type"] = hold_fix_type

    writers = _normalize_writers(raw.get("writers"))
    if writers:
        normalized["writers"] = writers
    return normalized
