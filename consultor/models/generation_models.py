# consultor/models/generation_models.py

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from consultor.models.consultation import BlockConfig, DiagnosisPartDescriptor, Question


class FeedbackRequest(BaseModel):
    question_text: str
    user_answer: str
    block_theme: str
    initial_form_data: Optional[Dict[str, Any]] = None
    intent: Optional[str] = None
    reply_guide: Optional[str] = None
    tone_adjustments: Optional[Dict[str, str]] = None
    example_reactions: Optional[List[str]] = None

    @classmethod
    def for_question(
        cls,
        question: Question,
        block: BlockConfig,
        answer: str,
        initial_form_data: Optional[Dict[str, Any]] = None
    ) -> "FeedbackRequest":
        return cls(
            question_text=question.text,
            user_answer=answer,
            block_theme=block.theme,
            initial_form_data=initial_form_data or None,
            intent=question.intent,
            reply_guide=question.reply_guide,
            tone_adjustments=question.tone_adjustments,
            example_reactions=question.example_reactions,
        )


class DiagnosisRequest(BaseModel):
    part_id: str
    part_title: str
    part_guidance: str
    user_responses: Dict[str, str] = Field(default_factory=dict)
    initial_form_data: Optional[Dict[str, Any]] = None

    @classmethod
    def for_part(
        cls,
        descriptor: DiagnosisPartDescriptor,
        user_responses: Dict[str, str],
        initial_form_data: Optional[Dict[str, Any]] = None
    ) -> "DiagnosisRequest":
        return cls(
            part_id=descriptor.part_id,
            part_title=descriptor.title,
            part_guidance=descriptor.ai_guidance,
            user_responses=dict(user_responses),
            initial_form_data=initial_form_data or None,
        )
