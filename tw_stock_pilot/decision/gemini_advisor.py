"""
Gemini portfolio advisor — short LLM commentary over current holdings.

Calls the Gemini generateContent REST endpoint with httpx and asks for a JSON
reply {"advice": ..., "lesson": ...}. Without an API key, or when the call
fails for a reason that is not the user's to fix, rule-based mock advice is
returned instead so the caller always gets something to display.

Usage:
    advisor = GeminiAdvisor(api_key=os.getenv("GEMINI_API_KEY", ""))
    advice = await advisor.generate_advice(holdings, signals=cache.snapshot())
"""

import asyncio
import json
import re
from typing import Any, Dict, List, Mapping, NamedTuple, Sequence

import httpx
from loguru import logger
from pydantic import BaseModel

from tw_stock_pilot.portfolio.schemas import Holding
from tw_stock_pilot.strategy.models import StrategyAdvice


class ModelInfo(NamedTuple):
    id: str
    name: str
    description: str


AVAILABLE_MODELS: List[ModelInfo] = [
    ModelInfo("gemini-2.0-flash", "Gemini 2.0 Flash", "Standard model, fast and stable"),
    ModelInfo("gemini-2.0-flash-lite", "Gemini 2.0 Flash Lite", "Lightest model, fastest replies"),
    ModelInfo(
        "gemini-2.0-flash-thinking-exp-01-21",
        "Gemini 2.0 Flash Thinking",
        "Stronger reasoning (experimental)",
    ),
]

DEFAULT_MODEL = "gemini-2.0-flash"
DEFAULT_LESSON = "投資需要耐心與紀律。"

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


def resolve_model(model_id: str | None) -> str:
    """Return model_id if it is a known model, else the default."""
    if model_id and any(m.id == model_id for m in AVAILABLE_MODELS):
        return model_id
    return DEFAULT_MODEL


class PortfolioAdvice(BaseModel):
    """Advisor reply shown next to the portfolio."""

    advice: str
    lesson: str
    header: str | None = None
    data_source: str = "GEMINI_API"
    model: str | None = None
    error: str | None = None


class ApiKeyCheck(BaseModel):
    valid: bool
    available_models: List[str] = []
    error: str | None = None


class GeminiError(Exception):
    """Non-200 reply from the Gemini API."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"HTTP {status_code}: {message}")
        self.status_code = status_code
        self.message = message


# Errors the user must act on, keyed by classification code.
_USER_ERRORS: Dict[str, Dict[str, str]] = {
    "API_KEY_INVALID": {
        "header": "API Key 無效",
        "advice": "請重新設定正確的 Key",
        "lesson": "驗證失敗",
    },
    "QUOTA_EXCEEDED": {
        "header": "配額不足",
        "advice": "免費版額度已滿，請切換模型或稍候",
        "lesson": "建議使用 Flash Lite",
    },
    "PERMISSION_DENIED": {
        "header": "權限不足",
        "advice": "此 Key 無法存取該模型，請切換其他模型",
        "lesson": "請嘗試其他 Flash 模型",
    },
    "MODEL_NOT_FOUND": {
        "header": "模型不可用",
        "advice": "請在設定中更換模型",
        "lesson": "建議使用 Flash",
    },
}


def classify_error(error: GeminiError) -> str | None:
    """Map an API error to a user-facing code, or None for a generic failure."""
    text = error.message.lower()
    if error.status_code == 401 or "api_key_invalid" in text or "api key not valid" in text:
        return "API_KEY_INVALID"
    if error.status_code == 429 or "quota" in text:
        return "QUOTA_EXCEEDED"
    if error.status_code == 403:
        return "PERMISSION_DENIED"
    if error.status_code == 404:
        return "MODEL_NOT_FOUND"
    return None


# ── Mock advice ─────────────────────────────────────────────────────────────


def generate_mock_advice(holdings: Sequence[Holding]) -> PortfolioAdvice:
    """Rule-based advice used when the API is unavailable."""
    if not holdings:
        return PortfolioAdvice(
            lesson="投資的第一步是建立部位。",
            advice="目前無持股。建議從權值股開始研究。",
            data_source="MOCK",
        )

    total_value = sum(h.market_value for h in holdings)
    total_cost = sum(h.cost_basis for h in holdings)
    unrealized = total_value - total_cost

    if unrealized > 0:
        pct = unrealized / total_cost * 100 if total_cost > 0 else 0.0
        return PortfolioAdvice(
            lesson="順勢而為，抱緊獲利。",
            advice=f"目前獲利 {pct:.1f}%。建議設好移動停利。",
            data_source="MOCK",
        )
    return PortfolioAdvice(
        lesson="停損是投資最重要的紀律。",
        advice="目前回檔。建議檢視基本面，跌破支撐應減碼。",
        data_source="MOCK",
    )


# ── Prompt / response ───────────────────────────────────────────────────────


def build_prompt(
    holdings: Sequence[Holding],
    signals: Mapping[str, StrategyAdvice] | None = None,
    output_language: str = "繁體中文",
) -> str:
    """Portfolio summary prompt asking for a JSON {advice, lesson} reply."""
    total_value = sum(h.market_value for h in holdings)
    total_cost = sum(h.cost_basis for h in holdings)
    unrealized = total_value - total_cost
    pct = unrealized / total_cost * 100 if total_cost > 0 else 0.0

    lines = [
        f"{h.symbol}: {h.shares:g} shares, cost {h.avg_cost:.2f}, price {h.current_price:.2f}"
        for h in holdings
    ]

    prompt = (
        "You are a professional Taiwan stock investment advisor. "
        "Analyse the portfolio below and give advice.\n\n"
        "## Portfolio\n"
        f"- Holdings: {len(holdings)}\n"
        f"- Market value: NT$ {total_value:,.0f}\n"
        f"- Total cost: NT$ {total_cost:,.0f}\n"
        f"- Unrealized P&L: NT$ {unrealized:,.0f} ({pct:.2f}%)\n\n"
        "## Positions\n"
        f"{chr(10).join(lines) or '(no holdings)'}\n"
    )

    if signals:
        signal_lines = [
            f"{symbol}: {advice.status.value} ({advice.reason})"
            for symbol, advice in signals.items()
        ]
        prompt += "\n## Two-day rule signals\n" + "\n".join(signal_lines) + "\n"

    prompt += (
        "\nProvide:\n"
        "1. advice: a short analysis of the current portfolio, about 50 words.\n"
        "2. lesson: one classic piece of investing wisdom, about 20 words.\n\n"
        f"Answer in {output_language}. Return JSON only:\n"
        '{"advice": "...", "lesson": "..."}'
    )
    return prompt


def parse_advice_text(text: str, model: str) -> PortfolioAdvice:
    """Take the first {...} object in the reply; plain text becomes the advice."""
    match = _JSON_OBJECT.search(text)
    if match:
        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError:
            logger.warning("GeminiAdvisor: reply contained malformed JSON, using raw text")
        else:
            if isinstance(parsed, dict):
                return PortfolioAdvice(
                    advice=str(parsed.get("advice", "")),
                    lesson=str(parsed.get("lesson", DEFAULT_LESSON)),
                    model=model,
                )

    return PortfolioAdvice(advice=text.strip(), lesson=DEFAULT_LESSON, model=model)


# ── Advisor ─────────────────────────────────────────────────────────────────


class GeminiAdvisor:
    """Gemini generateContent client.

    Args:
        api_key: Gemini API key. Keys of 10 characters or fewer count as unset.
        model: Model id; unknown ids fall back to DEFAULT_MODEL.
        output_language: Language requested in the prompt.
        timeout: HTTP timeout in seconds.
        client: Optional shared httpx client (not closed by the advisor).
    """

    BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"

    def __init__(
        self,
        api_key: str = "",
        model: str = DEFAULT_MODEL,
        output_language: str = "繁體中文",
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._model = resolve_model(model)
        self._output_language = output_language
        self._timeout = timeout
        self._client = client

    @property
    def model(self) -> str:
        return self._model

    @property
    def has_api_key(self) -> bool:
        return len(self._api_key) > 10

    async def generate_advice(
        self,
        holdings: Sequence[Holding],
        signals: Mapping[str, StrategyAdvice] | None = None,
    ) -> PortfolioAdvice:
        """Advice for the given holdings. Never raises for API failures."""
        if not self.has_api_key:
            logger.info("GeminiAdvisor: no API key, using mock advice")
            return generate_mock_advice(holdings)

        prompt = build_prompt(holdings, signals, self._output_language)
        try:
            text = await self._generate(self._model, prompt)
        except GeminiError as e:
            code = classify_error(e)
            logger.error("GeminiAdvisor: API call failed ({}): {}", code or "UNKNOWN", e)
            if code is not None:
                return PortfolioAdvice(
                    **_USER_ERRORS[code],
                    data_source="ERROR",
                    model=self._model,
                    error=code,
                )
            return self._fallback(holdings, str(e))
        except (httpx.HTTPError, ValueError) as e:
            logger.error("GeminiAdvisor: request error: {}", e)
            return self._fallback(holdings, str(e))

        advice = parse_advice_text(text, self._model)
        logger.info("GeminiAdvisor: advice generated with {}", self._model)
        return advice

    async def validate_api_key(self) -> ApiKeyCheck:
        """Probe the first model, then detect every model the key can use."""
        try:
            await self._generate(AVAILABLE_MODELS[0].id, "Test")
        except (GeminiError, httpx.HTTPError) as e:
            logger.warning("GeminiAdvisor: API key validation failed: {}", e)
            return ApiKeyCheck(valid=False, error=str(e) or "API key validation failed")

        return ApiKeyCheck(valid=True, available_models=await self.detect_available_models())

    async def detect_available_models(self) -> List[str]:
        """Probe all known models concurrently. Returns ids that answered."""
        if not self.has_api_key:
            return []
        results = await asyncio.gather(*(self._probe(m.id) for m in AVAILABLE_MODELS))
        return [model_id for model_id in results if model_id is not None]

    async def _probe(self, model_id: str) -> str | None:
        try:
            await self._generate(model_id, "Hi")
        except (GeminiError, httpx.HTTPError) as e:
            logger.warning("GeminiAdvisor: model {} not available: {}", model_id, e)
            return None
        return model_id

    def _fallback(self, holdings: Sequence[Holding], error: str) -> PortfolioAdvice:
        return generate_mock_advice(holdings).model_copy(
            update={"data_source": "MOCK_FALLBACK", "error": error}
        )

    async def _generate(self, model_id: str, prompt: str) -> str:
        """POST a single-turn prompt and return the concatenated reply text.

        Raises:
            GeminiError: On any non-200 reply.
            httpx.HTTPError: On transport failures.
        """
        url = f"{self.BASE_URL}/{model_id}:generateContent"
        body = {"contents": [{"parts": [{"text": prompt}]}]}
        params = {"key": self._api_key}

        if self._client is not None:
            response = await self._client.post(url, params=params, json=body, timeout=self._timeout)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(url, params=params, json=body)

        if response.status_code != 200:
            raise GeminiError(response.status_code, response.text[:500])

        return _extract_text(response.json())


def _extract_text(data: Dict[str, Any]) -> str:
    candidates = data.get("candidates") or []
    if not candidates:
        return ""
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(part.get("text", "") for part in parts)
