"""프롬프트 템플릿/빌더.

뉴스 한 건을 고정된 5개 감성 카테고리 중 하나로 분류하도록 JSON 출력을 요청한다.
입력 텍스트 길이는 max_chars를 초과하지 않도록 잘라낸다.
"""

from __future__ import annotations

from typing import List

from analysis.models.domain import SentimentCategory

CATEGORY_LIST = ", ".join(f'"{c.value}"' for c in SentimentCategory)

JSON_SCHEMA_SNIPPET = (
    "{"
    f'"SENTIMENT": one of [{CATEGORY_LIST}], '
    '"JUSTIFICATION": string (1-3 sentences, <=500 chars)'
    "}"
)


def trim_text(text: str, max_chars: int) -> str:
    s = " ".join(text.split())
    if len(s) <= max_chars:
        return s
    return s[: max(0, max_chars - 3)].rstrip() + "..."


def build_classification_messages(ticker: str, text: str, *, max_chars: int = 4000) -> List[dict]:
    """Build chat messages asking for a single sentiment label about `ticker`."""
    system = (
        "Role: you are a financial news analyst.\n"
        "Goal: judge how the given news affects the stock price outlook of the given ticker.\n"
        f"Output: JSON ONLY, no prose or code fences. Schema: {JSON_SCHEMA_SNIPPET}.\n\n"
        "Rules:\n"
        "1) Judge only the impact on the named ticker, not the market as a whole.\n"
        "2) Use Neutral when the news is unrelated or the impact is unclear.\n"
        "3) Reserve the Highly categories for material events (earnings surprises, M&A,\n"
        "   regulatory action, guidance changes).\n"
        "4) The justification must be grounded in the text; do not invent facts.\n"
    )
    user = "\n".join(
        [
            f"[Ticker] {ticker.upper()}",
            "[News]",
            trim_text(text, max_chars),
        ]
    )
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": user},
    ]
