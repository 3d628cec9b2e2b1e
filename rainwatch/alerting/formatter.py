"""
Bilingual Post Formatting (English + Telugu).

Two formatters behind one interface:
- LLMFormatter: Claude writes the copy from the exact numbers, strict JSON out
- FallbackFormatter: deterministic templates, never raises, '?' for gaps

FormattingService tries the primary under a timeout and silently switches
to the fallback on any degradation, so formatting never blocks a post.
"""

import asyncio
from typing import Optional, Protocol
from zoneinfo import ZoneInfo

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from rainwatch.alerting.schemas import BilingualText
from rainwatch.engine.blocks import DisplayBlock, NowBlock, TodayBlock, WeekBlock
from rainwatch.schemas.weather import DailyForecast, IntensityBucket, Scope, TimeWindow
from rainwatch.services.llm_gateway import LLMGateway
from rainwatch.services.resilience import CircuitBreaker, CircuitOpenError

logger = structlog.get_logger(__name__)

PLACEHOLDER = "?"

TELUGU_INTENSITY = {
    IntensityBucket.NONE: "జల్లులు",
    IntensityBucket.DRIZZLE: "జల్లులు",
    IntensityBucket.LIGHT: "తేలిక",
    IntensityBucket.MODERATE: "మోస్తరు",
    IntensityBucket.HEAVY: "భారీ",
    IntensityBucket.VERY_HEAVY: "అత్యంత భారీ",
}

TELUGU_WEEKDAYS = {
    "Sun": "ఆది", "Mon": "సోమ", "Tue": "మంగళ", "Wed": "బుధ",
    "Thu": "గురు", "Fri": "శుక్ర", "Sat": "శని",
}

SYSTEM_PROMPT = """You write short, precise rain alerts for Telangana from the exact numbers provided.
Write an English version and a Telugu version of the same message.
Use only the given data. Never invent places, times or amounts; keep one decimal at most.
Name the area first, then intensity, amount range and timing.
Tone: factual, slightly urgent only when thunder or very heavy rain is present.
Keep each language under 110 characters. No hashtags inside the text.
Return ONLY JSON: {"text_en": "...", "text_te": "...", "hashtags": ["..."]}"""


class FormatterDegradedError(Exception):
    """The primary formatter produced nothing usable."""
    pass


class FormatRequest(BaseModel):
    area_name: str
    scope: Scope
    block: DisplayBlock
    source_tag: str = "Model"
    metro: bool = False


class TextFormatter(Protocol):
    async def format(self, request: FormatRequest) -> BilingualText:
        ...


def source_tag_for(block) -> str:
    return "Model+Radar" if getattr(block, "radar_seen", False) else "Model"


def _num(value) -> str:
    if value is None:
        return PLACEHOLDER
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


# ── Deterministic fallback ────────────────────────────────────────────


class FallbackFormatter:
    """Template formatter. Pure string work on validated inputs; it cannot fail."""

    def __init__(self, display_timezone: str = "Asia/Kolkata"):
        self.tz = ZoneInfo(display_timezone)

    async def format(self, request: FormatRequest) -> BilingualText:
        return self.render(request)

    def render(self, request: FormatRequest) -> BilingualText:
        block = request.block
        if isinstance(block, NowBlock):
            en, te = self._now(block)
        elif isinstance(block, TodayBlock):
            en, te = self._today(block)
        else:
            en, te = self._week(block)
        return BilingualText(
            text_en=f"{request.area_name}: {en}",
            text_te=f"{request.area_name}: {te}",
        )

    def local_window(self, window: Optional[TimeWindow]) -> Optional[str]:
        if window is None:
            return None
        start = window.start.astimezone(self.tz)
        end = window.end.astimezone(self.tz)
        return f"{start:%H:%M}–{end:%H:%M} {start.tzname()}"

    def _now(self, block: NowBlock) -> tuple[str, str]:
        word = str(block.intensity).capitalize()
        te_word = TELUGU_INTENSITY[block.intensity]
        eta = f"{_num(block.eta_from)}–{_num(block.eta_to)}"
        rate = f"{_num(block.mmh_low)}–{_num(block.mmh_high)}"
        en = f"{word} rain in ~{eta} min ({rate} mm/h)"
        te = f"{te_word} వర్షం ~{eta} నిమిషాల్లో ({rate} మి.మీ/గం)"
        if block.thunder:
            en += ", thunder"
            te += ", మెరుపులు"
        return en + ".", te + "."

    def _today(self, block: TodayBlock) -> tuple[str, str]:
        word = str(block.intensity).capitalize()
        te_word = TELUGU_INTENSITY[block.intensity]
        amount = f"{_num(block.three_low)}–{_num(block.three_high)}"
        window = self.local_window(block.window)
        en = f"{word} rain {amount} mm likely {window or 'later today'}."
        te = f"{te_word} వర్షం {amount} మి.మీ {window or 'ఈ రోజు తరువాత'} అవకాశం."
        if block.max_prob_12h is not None:
            en += f" {round(block.max_prob_12h)}% chance."
            te += f" {round(block.max_prob_12h)}% అవకాశం."
        return en, te

    def _week(self, block: WeekBlock) -> tuple[str, str]:
        top = sorted(block.days, key=lambda d: (-d.mm, d.day))[:2]
        if not top:
            return f"{PLACEHOLDER} mm expected this week.", f"{PLACEHOLDER} మి.మీ ఈ వారం అవకాశం."
        en_days, te_days = [], []
        for day in top:
            weekday = day.day.strftime("%a")
            prob = f" ({round(day.max_prob)}%)" if day.max_prob is not None else ""
            amount = f"{_num(day.mm_low)}–{_num(day.mm_high)}"
            en_days.append(f"{weekday} {amount} mm{prob}")
            te_days.append(f"{TELUGU_WEEKDAYS.get(weekday, weekday)} {amount} మి.మీ{prob}")
        word = str(block.bucket).capitalize()
        te_word = TELUGU_INTENSITY[block.bucket]
        return (
            f"{word} rain this week: {', '.join(en_days)}.",
            f"ఈ వారం {te_word} వర్షం: {', '.join(te_days)}.",
        )

    def daily(self, day: DailyForecast, notable: bool) -> BilingualText:
        """Stored per-day outlook text; never posted."""
        if not notable:
            return BilingualText(text_en="Low chance of rain.", text_te="వర్షం అవకాశం తక్కువ.")
        total = f"{day.precipitation_sum or 0.0:.1f}"
        probability = round(day.probability_max or 0.0)
        return BilingualText(
            text_en=f"Rain {total} mm possible. {probability}% confidence.",
            text_te=f"వర్షం అవకాశం {total} మి.మీ. {probability}% నమ్మకం.",
        )


# ── LLM primary ───────────────────────────────────────────────────────


class LLMFormatter:
    def __init__(
        self,
        gateway: LLMGateway,
        model: str,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.gateway = gateway
        self.model = model
        self.breaker = breaker or CircuitBreaker(
            name="formatter_llm", failure_threshold=3, recovery_timeout=60.0,
        )

    async def format(self, request: FormatRequest) -> BilingualText:
        try:
            raw = await self.breaker.call(
                self.gateway.generate,
                system=SYSTEM_PROMPT,
                user_message="json_input:\n" + request.model_dump_json(),
                model=self.model,
                max_tokens=400,
            )
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise FormatterDegradedError(f"malformed provider response: {type(e).__name__}") from e
        if not raw or not raw.strip():
            raise FormatterDegradedError("empty response")
        try:
            return BilingualText.model_validate_json(_strip_fences(raw))
        except ValidationError as e:
            raise FormatterDegradedError(f"invalid JSON: {e.error_count()} errors") from e


def _strip_fences(raw: str) -> str:
    text = raw.strip()
    if text.startswith("```"):
        text = text.strip("`")
        if text.startswith("json"):
            text = text[4:]
    return text.strip()


# ── Service ───────────────────────────────────────────────────────────


class FormattingService:
    """Primary-with-fallback formatting plus final post composition."""

    def __init__(
        self,
        fallback: FallbackFormatter,
        primary: Optional[TextFormatter] = None,
        timeout: float = 5.0,
        base_hashtag: str = "#TelanganaWeather",
        metro_hashtag: str = "#HyderabadRains",
        max_chars: int = 280,
    ):
        self.fallback = fallback
        self.primary = primary
        self.timeout = timeout
        self.base_hashtag = base_hashtag
        self.metro_hashtag = metro_hashtag
        self.max_chars = max_chars

    async def format(self, request: FormatRequest) -> tuple[BilingualText, str]:
        """
        Returns:
            (text, used) where used is "llm" or "fallback"
        """
        parts = None
        used = "fallback"
        if self.primary is not None:
            try:
                parts = await asyncio.wait_for(self.primary.format(request), timeout=self.timeout)
                used = "llm"
            except (
                FormatterDegradedError,
                CircuitOpenError,
                asyncio.TimeoutError,
                httpx.HTTPError,
            ) as e:
                logger.warning(
                    "formatter_degraded",
                    area=request.area_name,
                    scope=str(request.scope),
                    error=type(e).__name__,
                )
        if parts is None:
            parts = self.fallback.render(request)
        return parts.model_copy(update={"hashtags": self._hashtags(parts, request.metro)}), used

    def compose(self, parts: BilingualText, source_tag: str) -> str:
        text = f"{parts.text_en}\n{parts.text_te}\n{' '.join(parts.hashtags)} ({source_tag})"
        if len(text) <= self.max_chars:
            return text
        return text[: self.max_chars - 1] + "…"

    def _hashtags(self, parts: BilingualText, metro: bool) -> list[str]:
        tags = [t for t in parts.hashtags if t.startswith("#")]
        required = [self.base_hashtag] + ([self.metro_hashtag] if metro else [])
        for tag in required:
            if tag not in tags:
                tags.append(tag)
        return tags
