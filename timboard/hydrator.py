from __future__ import annotations

import re
from typing import Any

from timboard.models import (
    COLLAB,
    HOLD_FIX,
    HOLD_FIX_TYPES,
    PLACEHOLDER,
    STOCK,
    CollabDetails,
    HoldFixDetails,
    StockDetails,
    TaskDetail,
)


TICKER_PATTERN = re.compile(r"\b[A-Z]{2,5}\b")


def extract_ticker(text: str) -> str | None:
    match = TICKER_PATTERN.search(text or "")
    return match.group(0) if match else None


def _hint(hints: dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = hints.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return ""


def _hold_fix_type(title: str, hints: dict[str, Any]) -> str:
    hinted = _hint(hints, "hold_fix_type").upper()
    if hinted in HOLD_FIX_TYPES:
        return hinted
    lower = title.lower()
    if "release" in lower or "발매" in title:
        return "RELEASE"
    if "fix" in lower or "픽스" in title:
        return "FIX"
    return "HOLD"


def build_collab_details(title: str, start_date: str, hints: dict[str, Any] | None = None) -> CollabDetails:
    hints = hints or {}
    return CollabDetails(
        track_name=_hint(hints, "track_name") or title,
        song_name=_hint(hints, "demo_name"),
        track_producer=_hint(hints, "track_producer") or PLACEHOLDER,
        top_liner=_hint(hints, "top_liner") or PLACEHOLDER,
        target_artist=_hint(hints, "artist") or PLACEHOLDER,
        deadline=start_date,
        requested_date=start_date,
        notes=_hint(hints, "notes"),
        publishing_info=_hint(hints, "publishing_info"),
    )


def build_hold_fix_details(title: str, start_date: str, hints: dict[str, Any] | None = None) -> HoldFixDetails:
    hints = hints or {}
    writers: list[str] = []
    splits: dict[str, float] = {}
    for item in hints.get("writers") or []:
        if not isinstance(item, dict):
            continue
        name = str(item.get("name", "")).strip()
        if not name:
            continue
        writers.append(name)
        try:
            percentage = float(item.get("percentage", item.get("split")) or 0)
        except (TypeError, ValueError):
            continue
        if percentage:
            splits[name] = percentage
    return HoldFixDetails(
        type=_hold_fix_type(title, hints),
        demo_name=_hint(hints, "demo_name") or title,
        writers=writers,
        splits=splits,
        publishing_info=_hint(hints, "publishing_info"),
        hold_requested_date=start_date,
        target_artist=_hint(hints, "artist"),
        notes=_hint(hints, "notes"),
    )


def build_stock_details(text: str, hints: dict[str, Any] | None = None) -> StockDetails:
    hints = hints or {}
    ticker = _hint(hints, "ticker") or extract_ticker(text) or "STOCK"
    return StockDetails(ticker=ticker)


def hydrate(
    category: str,
    title: str,
    start_date: str,
    hints: dict[str, Any] | None = None,
    description: str = "",
) -> TaskDetail | None:
    """Build the structured payload for ``category`` from free text.

    Returns ``None`` for categories without structured detail. Only call
    for brand-new records or records that have no payload yet.
    """
    if category == COLLAB:
        return build_collab_details(title, start_date, hints)
    if category == HOLD_FIX:
        return build_hold_fix_details(title, start_date, hints)
    if category == STOCK:
        return build_stock_details(f"{title} {description}", hints)
    return None
