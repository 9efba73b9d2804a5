import re
from typing import Any, Dict, List

IMAGE_PATTERN = re.compile(r"\[\[([^:\]]+)(?::([^:\]]+))?\]\]")

IMAGE_SIZES = {
    "lg": {"width": 300, "height": 300},
    "md": {"width": 300, "height": 200},
    "sm": {"width": 200, "height": 150},
}
DEFAULT_IMAGE_SIZE = "md"


def _size(name) -> str:
    return name if name in IMAGE_SIZES else DEFAULT_IMAGE_SIZE


def parse_images(text: str) -> List[Dict[str, Any]]:
    """
    [[name]] / [[name:size]] -> [{ name, size, width, height, start, end }]
    Unknown sizes fall back to md.
    """
    images = []
    for m in IMAGE_PATTERN.finditer(text or ""):
        size = _size(m.group(2))
        images.append({
            "name": m.group(1),
            "size": size,
            **IMAGE_SIZES[size],
            "start": m.start(),
            "end": m.end(),
        })
    return images


def remove_images(text: str) -> str:
    return IMAGE_PATTERN.sub("", text or "")


def has_images(text: str) -> bool:
    return bool(IMAGE_PATTERN.search(text or ""))


def split_text_with_images(text: str) -> List[Dict[str, Any]]:
    """
    Splits text into ordered parts:
      { "type": "text", "content": "..." }
      { "type": "image", "image": {...} }
    Empty text runs are dropped.
    """
    text = text or ""
    parts: List[Dict[str, Any]] = []
    pos = 0
    for image in parse_images(text):
        if image["start"] > pos:
            parts.append({"type": "text", "content": text[pos:image["start"]]})
        parts.append({"type": "image", "image": image})
        pos = image["end"]
    if pos < len(text):
        parts.append({"type": "text", "content": text[pos:]})
    return parts
