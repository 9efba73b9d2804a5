import logging
import re
from typing import Any, Callable, Dict, List, Optional

from engine.config import RESOURCE_KEYS, RESOURCES, STAT_KEYS, STATS


logger = logging.getLogger(__name__)

VARIABLE_PATTERN = re.compile(r"\$\{([a-zA-Z_]+):([a-zA-Z0-9_]+)\}")

Formatter = Callable[[Any], str]


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _max_formatter(max_value) -> Formatter:
    def fmt(value):
        return f"{_format_value(value)}/{max_value}"
    return fmt


class VariableRegistry:
    """
    Maps "category:key" to { category, key, path, default, formatter, display_name }.

    path is a state path, dotted for nested lookups ("experience.strength").
    Built-ins cover stats, resources (plus "<key>_max" as "value/max"),
    progress counters, experience and levels. Author variables from game
    data register as "vars:<id>".
    """

    def __init__(self, game_data=None):
        self._definitions: Dict[str, Dict[str, Any]] = {}

        for stat in STAT_KEYS:
            name = STATS[stat]["display_name"]
            self.register("stats", stat, stat, "0", display_name=name)
            self.register("exps", stat, f"experience.{stat}", "0", display_name=f"{name} 경험치")
            self.register("levels", stat, f"levels.{stat}", "1", display_name=f"{name} 레벨")

        for resource in RESOURCE_KEYS:
            info = RESOURCES[resource]
            self.register("resources", resource, resource, "0", display_name=info["display_name"])
            self.register(
                "resources",
                f"{resource}_max",
                resource,
                "0/0",
                formatter=_max_formatter(info["max_value"]),
                display_name=f"{info['display_name']} (max)",
            )

        self.register("progress", "current_floor", "current_floor", "1", display_name="현재 층")
        self.register("progress", "death_count", "death_count", "0", display_name="전체 사망 횟수")
        self.register("progress", "scene_count", "scene_count", "0", display_name="방문한 씬 수")
        self.register("exps", "level", "experience.level", "0", display_name="레벨 경험치")
        self.register("levels", "level", "levels.level", "1", display_name="전체 레벨")

        variables = getattr(game_data, "variables", None) or {}
        for var_id, record in variables.items():
            record = record or {}
            self.register(
                "vars",
                var_id,
                f"variables.{var_id}",
                str(record.get("default_value", 0)),
                display_name=record.get("description") or var_id,
            )

    def register(
        self,
        category: str,
        key: str,
        path: str,
        default: str,
        formatter: Optional[Formatter] = None,
        display_name: Optional[str] = None,
    ):
        full_key = f"{category}:{key}"
        if full_key in self._definitions:
            raise ValueError(f"Text variable already registered: {full_key}")
        self._definitions[full_key] = {
            "category": category,
            "key": key,
            "path": path,
            "default": default,
            "formatter": formatter,
            "display_name": display_name or key,
        }

    def get(self, category: str, key: str) -> Optional[Dict[str, Any]]:
        return self._definitions.get(f"{category}:{key}")

    def keys(self) -> List[str]:
        return list(self._definitions.keys())

    def available_keys(self, category: str) -> List[str]:
        prefix = f"{category}:"
        return [k.split(":", 1)[1] for k in self._definitions if k.startswith(prefix)]


def extract_value(state: Dict[str, Any], definition: Dict[str, Any]) -> Any:
    value: Any = state
    for part in definition["path"].split("."):
        if not isinstance(value, dict):
            return definition["default"]
        value = value.get(part)
        if value is None:
            return definition["default"]
    return value


class TextVariableParser:
    """
    Replaces ${category:key} tokens with values from the player state.

      "Strength: ${stats:strength}"  ->  "Strength: 7"

    Unknown tokens are left untouched and reported in `errors`.
    """

    def __init__(self, registry: Optional[VariableRegistry] = None):
        self.registry = registry or VariableRegistry()

    def parse(self, text: str, state: Dict[str, Any]) -> Dict[str, Any]:
        replaced: List[Dict[str, Any]] = []
        errors: List[str] = []

        def substitute(m: re.Match) -> str:
            category, key = m.group(1), m.group(2)
            definition = self.registry.get(category, key)
            if definition is None:
                errors.append(f"Undefined variable: {category}:{key}")
                return m.group(0)

            value = extract_value(state, definition)
            formatter = definition["formatter"]
            try:
                out = formatter(value) if formatter else _format_value(value)
            except (TypeError, ValueError) as e:
                errors.append(f"Variable {category}:{key} failed: {e}")
                return definition["default"]

            replaced.append({
                "category": category,
                "key": key,
                "original": m.group(0),
                "value": out,
            })
            return out

        result = VARIABLE_PATTERN.sub(substitute, text or "")
        for error in errors:
            logger.error("Text variable error: %s", error)

        return {
            "text": result,
            "variables": replaced,
            "errors": errors,
            "has_variables": bool(VARIABLE_PATTERN.search(text or "")),
        }

    def render(self, text: str, state: Dict[str, Any]) -> str:
        return self.parse(text, state)["text"]


def has_variables(text: str) -> bool:
    return bool(VARIABLE_PATTERN.search(text or ""))


def extract_variable_keys(text: str) -> List[str]:
    return [f"{m.group(1)}:{m.group(2)}" for m in VARIABLE_PATTERN.finditer(text or "")]


_default_registry: Optional[VariableRegistry] = None


def default_registry() -> VariableRegistry:
    global _default_registry
    if _default_registry is None:
        _default_registry = VariableRegistry()
    return _default_registry


def register_variable(category: str, key: str, path: str, default: str = "", formatter: Optional[Formatter] = None, registry: Optional[VariableRegistry] = None):
    (registry or default_registry()).register(category, key, path, default, formatter=formatter)


def get_available_keys(category: str, registry: Optional[VariableRegistry] = None) -> List[str]:
    return (registry or default_registry()).available_keys(category)
