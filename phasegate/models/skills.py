"""Role skill definition: the prompt and obligations handed to an Author."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from phasegate.models.phases import PipelineRole


class SkillDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: PipelineRole
    version: str = "1.0"
    system_prompt: str
    required_outputs: list[str] = []
    constraints: list[str] = []
    depends_on: list[PipelineRole] = []
