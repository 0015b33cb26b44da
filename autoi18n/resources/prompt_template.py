"""
Translation prompt template resource.

A template holds the fixed system instruction, one task instruction per
request kind (whole markdown document, JSON tree, markdown line map) and the
response directives appended after the payload.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from autoi18n.core.locales import get_locale_name
from autoi18n.resources.base import Resource

DEFAULT_PROMPTS_PATH = Path(__file__).parent / "prompts" / "translation.yaml"


@dataclass
class TaskInstruction:
    """The instruction for one kind of translation request."""
    
    prompt: str
    parameters: dict[str, Any] = field(default_factory=dict)
    
    def interpolate(self, context: dict[str, Any]) -> str:
        """
        Interpolate variables in the instruction.
        
        Supports {source_locale}, {target_name}, etc. Only locale
        variables go through here; payloads are appended afterwards.
        """
        text = self.prompt
        for key, value in context.items():
            text = text.replace(f"{{{key}}}", str(value))
        return text.strip()
    
    def to_dict(self) -> dict[str, Any]:
        return {
            "prompt": self.prompt,
            "parameters": self.parameters,
        }
    
    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TaskInstruction:
        return cls(
            prompt=data["prompt"],
            parameters=data.get("parameters", {}),
        )


class PromptTemplate(Resource):
    """Prompts shared by every provider's request builder."""
    
    def __init__(
        self,
        resource_id: str,
        system_prompt: str,
        instructions: dict[str, TaskInstruction],
        directives: dict[str, str] | None = None,
        version: int = 1,
    ):
        self._resource_id = resource_id
        self._system_prompt = system_prompt.strip()
        self._instructions = instructions
        self._directives = {k: v.strip() for k, v in (directives or {}).items()}
        self._version = version
    
    @property
    def resource_id(self) -> str:
        return self._resource_id
    
    @property
    def resource_type(self) -> str:
        return "prompts"
    
    @property
    def version(self) -> int:
        return self._version
    
    @property
    def system_prompt(self) -> str:
        return self._system_prompt
    
    def directive(self, name: str) -> str:
        return self._directives.get(name, "")
    
    def instruction(
        self,
        kind: str,
        source_locale: str,
        target_locale: str,
    ) -> str:
        """Render the task instruction for one request kind and locale pair."""
        task = self._instructions.get(kind)
        if not task:
            raise ValueError(f"Unknown instruction kind: {kind}")
        return task.interpolate({
            "source_locale": source_locale,
            "target_locale": target_locale,
            "source_name": get_locale_name(source_locale),
            "target_name": get_locale_name(target_locale),
        })
    
    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self._resource_id,
            "version": self._version,
            "system_prompt": self._system_prompt,
            "instructions": {k: v.to_dict() for k, v in self._instructions.items()},
            "directives": self._directives,
        }
    
    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PromptTemplate:
        instructions = {
            k: TaskInstruction.from_dict(v)
            for k, v in data.get("instructions", {}).items()
        }
        return cls(
            resource_id=data["id"],
            system_prompt=data["system_prompt"],
            instructions=instructions,
            directives=data.get("directives"),
            version=data.get("version", 1),
        )


def load_translation_prompts(path: Path | str | None = None) -> PromptTemplate:
    """Load the translation prompt template, defaulting to the packaged one."""
    return PromptTemplate.from_yaml(path or DEFAULT_PROMPTS_PATH)
