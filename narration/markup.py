import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from narration.cache import ParseCache


logger = logging.getLogger(__name__)

TAG_PATTERN = re.compile(r"\{\{([^}:]+)(?::([^}]+))?\}\}")
ANY_TAG_PATTERN = re.compile(r"\{\{[^}]+\}\}")

COLORS = {
    "red": "#FF3B30",
    "blue": "#007AFF",
    "green": "#34C759",
    "yellow": "#FF9500",
    "positive": "#34C759",
    "negative": "#FF3B30",
    "neutral": "#8E8E93",
}

# effect -> (intensity, duration ms, color)
EFFECT_DEFAULTS: Dict[str, Tuple[float, int, str]] = {
    "bold": (1.0, 0, ""),
    "italic": (1.0, 0, ""),
    "underline": (1.0, 0, ""),
    "highlight": (0.8, 0, COLORS["yellow"]),
    "red": (1.0, 0, COLORS["red"]),
    "blue": (1.0, 0, COLORS["blue"]),
    "green": (1.0, 0, COLORS["green"]),
    "yellow": (1.0, 0, COLORS["yellow"]),
    "positive": (1.0, 0, COLORS["positive"]),
    "negative": (1.0, 0, COLORS["negative"]),
    "neutral": (1.0, 0, COLORS["neutral"]),
    "shake": (1.0, 1000, ""),
    "glow": (1.0, 2000, COLORS["yellow"]),
    "fade": (1.0, 3000, ""),
    "scale": (1.0, 1500, ""),
    "wave": (1.0, 1500, ""),
    "pulse": (1.0, 1000, ""),
}

SUPPORTED_EFFECTS = list(EFFECT_DEFAULTS.keys())


# ──────────────────────────────────────────────
# Pass 1: strip tags, build raw -> clean offsets
# ──────────────────────────────────────────────

def strip_tags(text: str) -> Tuple[str, List[int]]:
    """
    Returns (clean_text, offsets) where offsets[i] is the clean-text index
    corresponding to raw index i (len(text) + 1 entries). Every raw index
    inside a tag maps to the clean index where the tag was removed.
    """
    clean: List[str] = []
    offsets: List[int] = []
    pos = 0
    for m in ANY_TAG_PATTERN.finditer(text):
        for ch in text[pos:m.start()]:
            offsets.append(len(clean))
            clean.append(ch)
        offsets.extend([len(clean)] * (m.end() - m.start()))
        pos = m.end()
    for ch in text[pos:]:
        offsets.append(len(clean))
        clean.append(ch)
    offsets.append(len(clean))
    return "".join(clean), offsets


def match_tags(text: str, offsets: List[int], errors: List[str]) -> List[Dict[str, Any]]:
    """
    Stack matcher over {{effect}} / {{effect:intensity}} tags. A tag equal
    to the top of the stack closes it; anything else opens. Effect spans are
    in clean-text coordinates.
    """
    effects: List[Dict[str, Any]] = []
    stack: List[Dict[str, Any]] = []

    for m in TAG_PATTERN.finditer(text):
        tag = m.group(1).lower()
        raw_intensity = m.group(2)
        index = m.start()

        if tag not in EFFECT_DEFAULTS:
            errors.append(f"Unsupported effect: {tag} (at {index})")
            continue

        intensity: Optional[float] = None
        if raw_intensity is not None:
            try:
                intensity = float(raw_intensity)
            except ValueError:
                intensity = None
            if intensity is None or intensity != intensity or intensity < 0:
                errors.append(f"Invalid intensity: {raw_intensity} (at {index})")
                continue

        if stack and stack[-1]["tag"] == tag:
            opening = stack.pop()
            default_intensity, duration, color = EFFECT_DEFAULTS[tag]
            effects.append({
                "type": tag,
                "start": offsets[opening["end"]],
                "end": offsets[index],
                "intensity": opening["intensity"] if opening["intensity"] is not None else default_intensity,
                "duration": duration,
                "color": color,
            })
        else:
            stack.append({"tag": tag, "start": index, "end": m.end(), "intensity": intensity})

    for unmatched in stack:
        errors.append(f"Unmatched opening tag: {{{{{unmatched['tag']}}}}} (at {unmatched['start']})")

    return effects


# ──────────────────────────────────────────────
# Pass 2: segment by active-effect set
# ──────────────────────────────────────────────

def build_segments(clean_text: str, effects: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Splits clean_text wherever the set of covering effects changes.
    Each segment: { text, effects, start, end }.
    """
    if not effects:
        return [{"text": clean_text, "effects": [], "start": 0, "end": len(clean_text)}]

    active: List[Tuple[int, ...]] = [()] * (len(clean_text) + 1)
    for n, effect in enumerate(effects):
        for idx in range(effect["start"], effect["end"]):
            active[idx] = active[idx] + (n,)

    segments = []
    seg_start = 0
    for idx in range(1, len(clean_text) + 1):
        if active[idx] != active[seg_start]:
            segments.append({
                "text": clean_text[seg_start:idx],
                "effects": [effects[n] for n in active[seg_start]],
                "start": seg_start,
                "end": idx,
            })
            seg_start = idx
    if seg_start < len(clean_text):
        segments.append({
            "text": clean_text[seg_start:],
            "effects": [effects[n] for n in active[seg_start]],
            "start": seg_start,
            "end": len(clean_text),
        })
    return [s for s in segments if s["text"]]


# ──────────────────────────────────────────────
# Parser
# ──────────────────────────────────────────────

class TextEffectParser:
    """
    Parses inline effect markup:
      "You feel {{glow:2}}warm{{glow}} and {{red}}hurt{{red}}."

    Result:
      { original_text, text, effects, segments, has_errors, errors }

    On any error the whole clean text comes back as one plain segment;
    effects found before the error are still listed.
    """

    def __init__(self, cache: Optional[ParseCache] = None):
        self.cache = cache if cache is not None else ParseCache()

    def parse(self, text: str) -> Dict[str, Any]:
        cached = self.cache.get(text)
        if cached is not None:
            logger.debug("Markup cache hit (%s chars)", len(text))
            return cached

        errors: List[str] = []
        clean_text, offsets = strip_tags(text)
        effects = match_tags(text, offsets, errors)
        if errors:
            logger.debug("Markup errors: %s", errors)
            segments = build_segments(clean_text, [])
        else:
            segments = build_segments(clean_text, effects)

        result = {
            "original_text": text,
            "text": clean_text,
            "effects": effects,
            "segments": segments,
            "has_errors": bool(errors),
            "errors": errors,
        }
        self.cache.set(text, result)
        return result

    def clear_cache(self):
        self.cache.clear()

    def cache_stats(self) -> Dict[str, Any]:
        return self.cache.stats()


def remove_tags(text: str) -> str:
    return ANY_TAG_PATTERN.sub("", text)


def has_tags(text: str) -> bool:
    return bool(TAG_PATTERN.search(text or ""))


def has_effect(text: str, effect_type: str) -> bool:
    pattern = re.compile(r"\{\{" + re.escape(effect_type) + r"(?::[^}]+)?\}\}", re.IGNORECASE)
    return bool(pattern.search(text or ""))


def get_effect_types(text: str) -> List[str]:
    return [effect for effect in SUPPORTED_EFFECTS if has_effect(text, effect)]
