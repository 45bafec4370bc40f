from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Iterable, Protocol

from timboard.models import (
    COLLAB,
    HOLD_FIX,
    MUSIC,
    PERSONAL,
    PERSONAL_SUB_CATEGORIES,
    STOCK,
    TASK_CATEGORIES,
    WEEKLY,
    ExternalEvent,
)

logger = logging.getLogger(__name__)


COLLAB_KEYWORDS = ("협업", "collab", "collaboration", "cowrite", "co-write")
HOLD_FIX_KEYWORDS = ("홀드", "hold", "픽스", "fix")
PERSONAL_KEYWORDS = (
    "개인", "운동", "월세", "금전", "세금", "비용", "법인",
    "대출", "카드", "보험", "재무", "레슨", "세무사", "빌리",
    "갚", "브라보팝", "app", "테스트", "youtube", "유투브",
    "메모장", "목표", "단기", "중기", "연간", "계획", "루틴",
    "건강", "취미", "독서", "정리",
)
STRONG_STOCK_KEYWORDS = (
    "주식", "증권", "주가", "실적", "매출", "배당", "ipo",
    "earnings", "ticker", "nasdaq", "kospi", "kosdaq", "finance",
    "에어쇼", "airshow", "복기", "맥점", "매매",
    "고용보고서", "non-farm", "payrolls", "올림픽",
    "cpi", "ppi", "fomc", "gdp", "금리", "인플레이션",
    "etf", "펀드", "리밸런싱", "포트폴리오", "차트",
)
WEAK_STOCK_KEYWORDS = (
    "수익", "미국", "고용", "msci", "tsmc", "엔비디아",
    "물가", "소비자", "발표", "개최", "수익률",
)
MUSIC_KEYWORDS = (
    "희선", "대표님", "a&r", "보고", "솔로앨범", "마감",
    "피드백", "작가", "lead", "송캠프", "타이틀곡", "수급",
    "음악", "song", "demo", "track", "topline", "mix",
    "master", "session", "vocal", "writer", "release",
    "발매", "작곡", "작사", "리스닝", "싱글", "앨범",
)


@dataclass(frozen=True)
class KeywordRule:
    category: str
    any_of: tuple[str, ...]
    unless_any_of: tuple[str, ...] = ()

    def matches(self, text: str) -> bool:
        if not any(keyword in text for keyword in self.any_of):
            return False
        return not any(keyword in text for keyword in self.unless_any_of)


# Evaluated in order; the first matching rule wins.
KEYWORD_RULES: tuple[KeywordRule, ...] = (
    KeywordRule(COLLAB, COLLAB_KEYWORDS),
    KeywordRule(HOLD_FIX, HOLD_FIX_KEYWORDS),
    KeywordRule(PERSONAL, PERSONAL_KEYWORDS, unless_any_of=STRONG_STOCK_KEYWORDS),
    KeywordRule(STOCK, STRONG_STOCK_KEYWORDS),
    KeywordRule(STOCK, WEAK_STOCK_KEYWORDS, unless_any_of=MUSIC_KEYWORDS),
    KeywordRule(MUSIC, MUSIC_KEYWORDS),
)


def classify_by_keywords(title: str, description: str = "") -> str | None:
    """Return the raw keyword category (``MUSIC`` included) or ``None``."""
    text = f"{title}\n{description}".lower()
    for rule in KEYWORD_RULES:
        if rule.matches(text):
            return rule.category
    return None


def surface_category(raw_category: str | None) -> str:
    """Map a raw category onto the task categories shown on the boards.

    The generic music-work bucket lands on the weekly board.
    """
    category = str(raw_category or "").strip().upper()
    if category == MUSIC or category not in TASK_CATEGORIES:
        return WEEKLY
    return category


@dataclass
class ClassificationResult:
    category: str
    sub_category: str | None = None
    hints: dict[str, Any] = field(default_factory=dict)
    source: str = "keyword"
    error: str | None = None


class ClassificationClient(Protocol):
    def classify_event(self, title: str, description: str) -> dict[str, Any]:
        """May raise or return an empty mapping; never relied upon."""


class Classifier:
    def __init__(self, client: ClassificationClient | None = None, max_workers: int = 4) -> None:
        self.client = client
        self.max_workers = max(1, int(max_workers))

    def _has_client(self) -> bool:
        if self.client is None:
            return False
        is_configured = getattr(self.client, "is_configured", None)
        return is_configured() if callable(is_configured) else True

    def classify_keywords_only(self, title: str, description: str) -> ClassificationResult:
        keyword_category = classify_by_keywords(title, description)
        if keyword_category is not None:
            return ClassificationResult(category=surface_category(keyword_category), source="keyword")
        return ClassificationResult(category=WEEKLY, source="default")

    def _ask_client(self, title: str, description: str) -> ClassificationResult:
        try:
            raw = self.client.classify_event(title, description) or {}
        except Exception as exc:
            logger.warning("classification call failed for %r: %s", title, exc)
            return ClassificationResult(
                category=WEEKLY,
                source="default",
                error=f"{type(exc).__name__}: {exc}",
            )
        raw_category = raw.get("category")
        if not raw_category:
            return ClassificationResult(category=WEEKLY, source="default")
        category = surface_category(raw_category)
        sub_category = raw.get("sub_category")
        if category != PERSONAL or sub_category not in PERSONAL_SUB_CATEGORIES:
            sub_category = None
        hints = {key: value for key, value in raw.items() if key not in {"category", "sub_category"}}
        return ClassificationResult(category=category, sub_category=sub_category, hints=hints, source="ai")

    def classify(self, title: str, description: str = "") -> ClassificationResult:
        result = self.classify_keywords_only(title, description)
        if result.source == "keyword" or not self._has_client():
            return result
        return self._ask_client(title, description)

    def classify_batch(self, events: Iterable[ExternalEvent]) -> dict[str, ClassificationResult]:
        """Classify a provider batch keyed by external id.

        Keyword hits resolve inline; the rest fan out to the client in a
        thread pool so one slow or failing call only affects its own event.
        """
        results: dict[str, ClassificationResult] = {}
        pending: dict[str, ExternalEvent] = {}
        for event in events:
            if event.external_id in results or event.external_id in pending:
                continue
            keyword_result = self.classify_keywords_only(event.title, event.description)
            if keyword_result.source == "keyword" or not self._has_client():
                results[event.external_id] = keyword_result
            else:
                pending[event.external_id] = event

        if not pending:
            return results

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(pending))) as executor:
            future_to_id = {
                executor.submit(self._ask_client, event.title, event.description): external_id
                for external_id, event in pending.items()
            }
            for future in as_completed(future_to_id):
                results[future_to_id[future]] = future.result()
        return results
