"""Plain-text message templates for LINE broadcasts.

LINE text messages are plain text (no markup) and capped at 5000
characters. User-provided fields are inserted verbatim.
"""

import re
from typing import Optional, Sequence

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

ACK_REMINDER = "必ず作業前に確認（確認ボタンで既読登録）"
LINK_HEADER = "▼KY公開リンク"
MAX_TEXT_LENGTH = 4900

# Forecast slots considered for the warning line
WEATHER_HOURS = (9, 12, 15)
WIND_WARN_MS = 8
RAIN_WARN_MM = 3
WIND_DIRECTIONS = ("北", "北東", "東", "南東", "南", "南西", "西", "北西")

_BULLET_PREFIX = re.compile(r"^[•・\-*]\s*")


class WeatherSlot(BaseModel):
    """Forecast for one hour of the working day."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    hour: int
    weather_text: Optional[str] = None
    temperature_c: Optional[float] = None
    wind_direction_deg: Optional[float] = None
    wind_speed_ms: Optional[float] = None
    precipitation_mm: Optional[float] = None


def _shorten(text: str, max_len: int) -> str:
    if len(text) <= max_len:
        return text
    return text[: max_len - 1] + "…"


def _first_line(text: Optional[str], max_len: int = 70) -> str:
    """First non-empty line, shortened with an ellipsis."""
    lines = [ln.strip() for ln in (text or "").replace("\r\n", "\n").split("\n")]
    first = next((ln for ln in lines if ln), "")
    return _shorten(first, max_len)


def _first_bullet(text: Optional[str], max_len: int = 120) -> str:
    """First non-empty line with any leading bullet marker removed."""
    for line in (text or "").replace("\r\n", "\n").split("\n"):
        item = _BULLET_PREFIX.sub("", line.strip(), count=1).strip()
        if item:
            return _shorten(item, max_len)
    return ""


def _number(value: float) -> str:
    return f"{value:g}"


def wind_direction_ja(degrees: Optional[float]) -> str:
    """Eight-point compass name for a wind bearing in degrees."""
    if degrees is None:
        return "—"
    normalized = degrees % 360
    return WIND_DIRECTIONS[int(normalized / 45 + 0.5) % 8]


def pick_worst_weather(slots: Optional[Sequence[WeatherSlot]]) -> Optional[WeatherSlot]:
    """Slot with the strongest combined wind and rain; earliest hour on ties."""
    candidates = [slot for slot in slots or [] if slot.hour in WEATHER_HOURS]
    if not candidates:
        return None

    def severity(slot: WeatherSlot) -> float:
        score = 0.0
        if slot.wind_speed_ms is not None:
            score += min(max(slot.wind_speed_ms, 0), 30) * 10
        if slot.precipitation_mm is not None:
            score += min(max(slot.precipitation_mm, 0), 50) * 8
        return score

    return min(candidates, key=lambda slot: (-severity(slot), slot.hour))


def weather_warning_line(slot: Optional[WeatherSlot]) -> str:
    """Warning line such as ``⚠ 気象：12時 強風（北西 9m/s） / 雨（降水 4mm）``.

    Returns "" when the slot is below both the wind and rain thresholds.
    """
    if slot is None:
        return ""

    parts = []
    if slot.wind_speed_ms is not None and slot.wind_speed_ms >= WIND_WARN_MS:
        direction = wind_direction_ja(slot.wind_direction_deg)
        parts.append(f"強風（{direction} {_number(slot.wind_speed_ms)}m/s）")
    if slot.precipitation_mm is not None and slot.precipitation_mm >= RAIN_WARN_MM:
        parts.append(f"雨（降水 {_number(slot.precipitation_mm)}mm）")

    if not parts:
        return ""
    return f"⚠ 気象：{slot.hour}時 {' / '.join(parts)}"


def format_work_summary(
    work_detail: Optional[str],
    workers: Optional[int],
    third_party_level: Optional[str] = None,
) -> str:
    """Format the one-line work summary, e.g. ``作業：足場組立（作業員5名 / 墓参者 多）``."""
    work = _first_line(work_detail)

    suffix = []
    if workers is not None:
        suffix.append(f"作業員{workers}名")
    third = (third_party_level or "").strip()
    if third:
        suffix.append(f"墓参者 {third}")

    if work and suffix:
        return f"作業：{work}（{' / '.join(suffix)}）"
    if work:
        return f"作業：{work}"
    return " / ".join(suffix)


def format_hazard_bullets(
    hazards: Optional[str],
    countermeasures: Optional[str],
    third_party: Optional[str],
) -> list[str]:
    """One bullet each for the first hazard, countermeasure and third-party point."""
    bullets = []
    for label, text in (("危険", hazards), ("対策", countermeasures), ("第三者", third_party)):
        item = _first_bullet(text)
        if item:
            bullets.append(f"・{label}：{item}")
    return bullets


def build_broadcast_text(
    title: str,
    url: Optional[str] = None,
    note: Optional[str] = None,
    work_detail: Optional[str] = None,
    workers: Optional[int] = None,
    third_party_level: Optional[str] = None,
    weather_slots: Optional[Sequence[WeatherSlot]] = None,
    ai_hazards: Optional[str] = None,
    ai_countermeasures: Optional[str] = None,
    ai_third_party: Optional[str] = None,
) -> str:
    """Assemble the "today's KY" broadcast message.

    Order: title line, optional work summary, optional weather warning,
    acknowledgment reminder, optional note block, optional link block.
    Without a note, the first hazard / countermeasure / third-party point
    of the assessment fills the note block as bullets.

    Args:
        title: KY title (required, non-blank)
        url: Public link to the KY entry
        note: Free-text note shown as its own block
        work_detail: Work description; only its first line is used
        workers: Number of workers on the task
        third_party_level: Expected level of third parties near the site
        weather_slots: Hourly forecast; the worst of 9/12/15 o'clock is checked
        ai_hazards: Assessed hazards, one per line
        ai_countermeasures: Assessed countermeasures, one per line
        ai_third_party: Assessed third-party measures, one per line

    Returns:
        Message text, or "" when the title is blank
    """
    title = (title or "").strip()
    if not title:
        return ""

    lines = [f"【本日KY】{title}"]

    summary = format_work_summary(work_detail, workers, third_party_level)
    if summary:
        lines.append(summary)

    warning = weather_warning_line(pick_worst_weather(weather_slots))
    if warning:
        lines.append(warning)

    lines.append(ACK_REMINDER)

    note = (note or "").strip()
    if note:
        lines.append("")
        lines.append(note)
    else:
        bullets = format_hazard_bullets(ai_hazards, ai_countermeasures, ai_third_party)
        if bullets:
            lines.append("")
            lines.extend(bullets)

    url = (url or "").strip()
    if url:
        lines.append(LINK_HEADER)
        lines.append(url)

    text = "\n".join(lines)
    while "\n\n\n" in text:
        text = text.replace("\n\n\n", "\n\n")

    if len(text) > MAX_TEXT_LENGTH:
        text = text[: MAX_TEXT_LENGTH - 1] + "…"
    return text
