import logging
from typing import Any, Dict, List, Optional

from narration.images import split_text_with_images
from narration.markup import TextEffectParser
from narration.variables import TextVariableParser
from script.conditions import ConditionEvaluator


logger = logging.getLogger(__name__)


class SceneTextProcessor:
    """
    Scene text pipeline: conditional text, then ${category:key} variables,
    then {{effect}} tags.
    """

    def __init__(
        self,
        variables: Optional[TextVariableParser] = None,
        markup: Optional[TextEffectParser] = None,
        evaluator: Optional[ConditionEvaluator] = None,
    ):
        self.variables = variables or TextVariableParser()
        self.markup = markup or TextEffectParser()
        self.evaluator = evaluator or ConditionEvaluator()

    def select_text(self, scene: Dict[str, Any], state: Dict[str, Any]) -> str:
        conditional = scene.get("conditional_text")
        if isinstance(conditional, str):
            return conditional
        if isinstance(conditional, list):
            for entry in conditional:
                if not isinstance(entry, dict):
                    continue
                if self.evaluator.evaluate(entry.get("condition"), state):
                    return entry.get("text", "")
        return scene.get("text", "")

    def get_scene_text(self, scene: Optional[Dict[str, Any]], state: Dict[str, Any]) -> str:
        if not scene:
            return ""
        return self.variables.render(self.select_text(scene, state), state)

    def process_scene_text(self, text: str, state: Dict[str, Any]) -> Dict[str, Any]:
        substituted = self.variables.parse(text, state)
        parsed = self.markup.parse(substituted["text"])
        errors: List[str] = substituted["errors"] + parsed["errors"]
        if errors:
            logger.warning("Scene text processed with %s errors", len(errors))
        return {
            "text": parsed["text"],
            "effects": parsed["effects"],
            "segments": parsed["segments"],
            "errors": errors,
        }

    def process_text_with_images(self, text: str, state: Dict[str, Any]) -> List[Dict[str, Any]]:
        """
        Like process_scene_text, but image tags split the text first and
        every text part is processed on its own.
        """
        substituted = self.variables.parse(text, state)
        parts = []
        for part in split_text_with_images(substituted["text"]):
            if part["type"] == "image":
                parts.append(part)
                continue
            parsed = self.markup.parse(part["content"])
            parts.append({
                "type": "text",
                "content": parsed["text"],
                "segments": parsed["segments"],
                "errors": substituted["errors"] + parsed["errors"],
            })
        return parts


_default_processor: Optional[SceneTextProcessor] = None


def _processor() -> SceneTextProcessor:
    global _default_processor
    if _default_processor is None:
        _default_processor = SceneTextProcessor()
    return _default_processor


def get_scene_text(scene: Optional[Dict[str, Any]], state: Dict[str, Any]) -> str:
    return _processor().get_scene_text(scene, state)


def process_scene_text(text: str, state: Dict[str, Any]) -> Dict[str, Any]:
    return _processor().process_scene_text(text, state)
