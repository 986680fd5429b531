# consultor/agents/consultant_agent.py
"""
Consultant Agent - feedback after each answer and the parts of the final diagnosis.

Acts as both generation collaborators of the orchestrator. It only fills
prompts and returns text; fallbacks and retries are the caller's business.
"""

import logging
from typing import Any, Dict, Optional

from consultor.agents.base_agent import BaseAgent
from consultor.core.prompt_manager import PromptType
from consultor.models.consultation import ConsultantIdentity, FinalDiagnosisPart
from consultor.models.generation_models import DiagnosisRequest, FeedbackRequest

logger = logging.getLogger(__name__)


class ConsultantAgent(BaseAgent):
    """
    Agent speaking as the configured consultant persona.
    """

    def __init__(self, identity: Optional[ConsultantIdentity] = None, **kwargs):
        self.identity = identity or ConsultantIdentity()

        super().__init__(
            name=self.identity.name,
            role="consultant",
            **kwargs
        )

        self._system_prompt = self.prompt_manager.get_prompt(
            PromptType.CONSULTANT_SYSTEM,
            identity_name=self.identity.name,
            identity_mission=self.identity.mission,
            identity_style=self.identity.style,
            identity_tone=self.identity.tone_of_voice
        )

    async def generate_feedback(self, request: FeedbackRequest) -> str:
        """
        Generate consultative feedback for one answered question.

        Raises:
            AgentError: If generation fails
        """
        logger.debug(f"Generating feedback for block theme '{request.block_theme}'")

        return await self.generate_text_with_prompt(
            PromptType.FEEDBACK,
            max_tokens=400,
            opening=self.identity.opening,
            pillar_reality=self.prompt_manager.get_prompt(PromptType.PILLAR_REALITY),
            pillar_potential=self.prompt_manager.get_prompt(PromptType.PILLAR_POTENTIAL),
            pillar_strategic=self.prompt_manager.get_prompt(PromptType.PILLAR_STRATEGIC),
            question_text=request.question_text,
            block_theme=request.block_theme,
            user_answer=request.user_answer,
            form_data_section=self._form_data_section(request.initial_form_data),
            hints_section=self._hints_section(request)
        )

    async def generate_diagnosis_part(self, request: DiagnosisRequest) -> FinalDiagnosisPart:
        """
        Generate the content of one diagnosis part.

        The part id and title are echoed from the request.

        Raises:
            AgentError: If generation fails or returns no content
        """
        logger.debug(f"Generating diagnosis part '{request.part_id}'")

        responses = "\n".join(
            f"- {question_id}: {answer}"
            for question_id, answer in request.user_responses.items()
        ) or "- (sem respostas)"

        content = await self.generate_text_with_prompt(
            PromptType.DIAGNOSIS_PART,
            max_tokens=900,
            part_title=request.part_title,
            part_guidance=request.part_guidance,
            user_responses=responses,
            form_data_section=self._form_data_section(request.initial_form_data)
        )

        return FinalDiagnosisPart(
            part_id=request.part_id,
            title=request.part_title,
            content=content
        )

    def _form_data_section(self, form_data: Optional[Dict[str, Any]]) -> str:
        if not form_data:
            return ""

        lines = []
        for field_id, value in form_data.items():
            if isinstance(value, (list, tuple)):
                value = ", ".join(str(v) for v in value)
            lines.append(f"- {field_id}: {value}")

        return self.prompt_manager.get_prompt(PromptType.FORM_DATA_SECTION, form_data="\n".join(lines))

    def _hints_section(self, request: FeedbackRequest) -> str:
        hints = []
        if request.intent:
            hints.append(f'- A intenção desta pergunta é: "{request.intent}"')
        if request.reply_guide:
            hints.append(
                f'- Use "{request.reply_guide}" como inspiração para a direção da resposta, '
                'adaptando à fala do usuário. Não copie literalmente.'
            )
        if request.tone_adjustments:
            for condition, adjustment in request.tone_adjustments.items():
                hints.append(f'- Se a resposta for/tiver "{condition}", então: "{adjustment}"')
        if request.example_reactions:
            reactions = " ".join(f'"{r}"' for r in request.example_reactions)
            hints.append(f"- Inspire-se em reações como: {reactions}")

        if not hints:
            return ""

        return self.prompt_manager.get_prompt(PromptType.QUESTION_HINTS_SECTION, hints="\n".join(hints))
