# consultor/models/consultation.py
"""
Immutable interview definition: initial form, question blocks and the
structure of the final diagnosis.

Instances are built once by the definition loader and handed to the
orchestrator; nothing in the running system mutates them.
"""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class FieldKind(str, Enum):
    TEXT = "text"
    NUMBER = "number"
    CHOICE = "choice"


class InitialFormField(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    prompt: str
    kind: FieldKind = FieldKind.TEXT
    options: List[str] = Field(default_factory=list)


class InitialFormConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = "inicio"
    title: str = ""
    description: str = ""
    fields: List[InitialFormField] = Field(default_factory=list)


class Question(BaseModel):
    """A single interview question plus the optional hints fed to the model"""
    model_config = ConfigDict(frozen=True)

    id: str
    block_id: str
    block_index: int
    index_in_block: int
    text: str
    intent: Optional[str] = None
    reply_guide: Optional[str] = None
    tone_adjustments: Optional[Dict[str, str]] = None
    example_reactions: Optional[List[str]] = None


class BlockConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    index: int
    theme: str
    question_count: int
    closing_comment: str = ""
    questions: List[Question]

    @model_validator(mode="after")
    def check_question_count(self) -> "BlockConfig":
        if self.question_count != len(self.questions):
            raise ValueError(
                f"Block '{self.id}' declares {self.question_count} questions "
                f"but has {len(self.questions)}"
            )
        if not self.questions:
            raise ValueError(f"Block '{self.id}' has no questions")
        return self


class DiagnosisPartDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    part_id: str
    title: str
    ai_guidance: str


class FinalDiagnosisPart(BaseModel):
    model_config = ConfigDict(frozen=True)

    part_id: str
    title: str
    content: str


class ConsultantIdentity(BaseModel):
    """Persona used by the consultant agent when talking to the user"""
    model_config = ConfigDict(frozen=True)

    name: str = "Maestro"
    mission: str = ""
    style: str = ""
    tone_of_voice: str = ""
    opening: str = ""


class ConsultationConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    initial_form: InitialFormConfig
    blocks: List[BlockConfig]
    diagnosis_parts: List[DiagnosisPartDescriptor]
    diagnosis_id: str = "diagnostico_final"
    diagnosis_title: str = ""
    diagnosis_description: str = ""
    identity: ConsultantIdentity = Field(default_factory=ConsultantIdentity)
    closing_message: str = ""

    @model_validator(mode="after")
    def check_consistency(self) -> "ConsultationConfig":
        if not self.blocks:
            raise ValueError("At least one question block is required")
        if not self.diagnosis_parts:
            raise ValueError("At least one diagnosis part is required")

        for position, block in enumerate(self.blocks):
            if block.index != position:
                raise ValueError(f"Block '{block.id}' has index {block.index}, expected {position}")

        ids = self.question_ids()
        if len(ids) != len(set(ids)):
            raise ValueError("Question ids must be unique")

        part_ids = [part.part_id for part in self.diagnosis_parts]
        if len(part_ids) != len(set(part_ids)):
            raise ValueError("Diagnosis part ids must be unique")
        return self

    def question_ids(self) -> List[str]:
        return [q.id for block in self.blocks for q in block.questions]

    def get_question(self, question_id: str) -> Optional[Question]:
        for block in self.blocks:
            for question in block.questions:
                if question.id == question_id:
                    return question
        return None

    @property
    def total_questions(self) -> int:
        return sum(block.question_count for block in self.blocks)
