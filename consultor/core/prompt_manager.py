# consultor/core/prompt_manager.py
"""
Centralized prompt management.

Keeps every prompt and fixed user-facing text in one place with:
- Organized prompt storage
- Variable substitution
"""
from typing import Dict, List
from enum import Enum
from dataclasses import dataclass
import logging
import re

from consultor.core.exceptions import PromptError

logger = logging.getLogger(__name__)


class PromptCategory(str, Enum):
    """Categories for organizing prompts"""
    CONSULTANT = "consultant"
    COMMON = "common"


class PromptType(str, Enum):
    """Enum for all prompt types - maps to prompt keys"""

    # Consultant agent prompts
    CONSULTANT_SYSTEM = "consultant.system"
    FEEDBACK = "consultant.feedback"
    DIAGNOSIS_PART = "consultant.diagnosis_part"
    FORM_DATA_SECTION = "consultant.section.form_data"
    QUESTION_HINTS_SECTION = "consultant.section.hints"
    PILLAR_REALITY = "consultant.pillar.reality"
    PILLAR_POTENTIAL = "consultant.pillar.potential"
    PILLAR_STRATEGIC = "consultant.pillar.strategic"

    # Fixed texts
    FEEDBACK_FALLBACK = "common.feedback.fallback"
    DIAGNOSIS_PART_FALLBACK = "common.diagnosis.part.fallback"
    FEEDBACK_ERROR_TITLE = "common.feedback.error.title"
    FEEDBACK_ERROR_MESSAGE = "common.feedback.error.message"
    DIAGNOSIS_ERROR_TITLE = "common.diagnosis.error.title"
    DIAGNOSIS_ERROR_MESSAGE = "common.diagnosis.error.message"
    SAVE_SUCCESS_TITLE = "common.save.success.title"
    SAVE_SUCCESS_MESSAGE = "common.save.success.message"
    SAVE_ERROR_TITLE = "common.save.error.title"
    SAVE_ERROR_MESSAGE = "common.save.error.message"
    TYPING_INDICATOR = "common.typing.indicator"


@dataclass
class Prompt:
    """Represents a single prompt template"""
    key: str
    template: str
    category: PromptCategory
    description: str = ""
    variables: List[str] = None

    def __post_init__(self):
        if self.variables is None:
            self.variables = self._extract_variables()

    def _extract_variables(self) -> List[str]:
        """Extract {variable} names from the template"""
        return sorted(set(re.findall(r'\{(\w+)\}', self.template)))

    def format(self, **kwargs) -> str:
        """
        Format the prompt with provided variables.

        Raises:
            PromptError: If required variables are missing
        """
        missing = set(self.variables) - set(kwargs.keys())
        if missing:
            raise PromptError(
                f"Missing required variables: {sorted(missing)}",
                prompt_type=self.key,
                details={"missing_variables": sorted(missing)}
            )

        try:
            return self.template.format(**kwargs)
        except (KeyError, IndexError) as e:
            raise PromptError(
                f"Error formatting prompt: {e}",
                prompt_type=self.key,
                details={"error": str(e)}
            ) from e


class PromptManager:
    """
    Centralized prompt management system.
    """

    def __init__(self):
        self.prompts: Dict[str, Prompt] = {}
        self._loaded = False

    def get_prompt(self, prompt_type, **kwargs) -> str:
        """
        Get a formatted prompt by PromptType (or plain string key).
        """
        key = prompt_type.value if hasattr(prompt_type, 'value') else str(prompt_type)
        return self.get(key, **kwargs)

    def load_prompts(self):
        """Load all prompts from the prompt modules"""
        if self._loaded:
            logger.debug("Prompts already loaded")
            return

        self._define_prompts()

        self._loaded = True
        logger.info(f"Loaded {len(self.prompts)} prompts")

    def _define_prompts(self):
        from consultor.prompts import consultant_prompts, common_prompts

        # Fixed texts: every uppercase constant, CONSTANT_NAME -> common.constant.name
        for name in dir(common_prompts):
            value = getattr(common_prompts, name)
            if isinstance(value, str) and name.isupper() and not name.startswith('_'):
                key = f"common.{'.'.join(name.lower().split('_'))}"
                self.add_prompt(Prompt(
                    key=key,
                    template=value,
                    category=PromptCategory.COMMON,
                    description=f"Auto-imported from {common_prompts.__name__}.{name}"
                ))

        consultant = [
            (PromptType.CONSULTANT_SYSTEM, consultant_prompts.SYSTEM_TEMPLATE, "Consultant persona"),
            (PromptType.FEEDBACK, consultant_prompts.FEEDBACK_TEMPLATE, "Feedback on a single answer"),
            (PromptType.DIAGNOSIS_PART, consultant_prompts.DIAGNOSIS_PART_TEMPLATE, "One part of the final diagnosis"),
            (PromptType.FORM_DATA_SECTION, consultant_prompts.FORM_DATA_SECTION, "Initial form data block"),
            (PromptType.QUESTION_HINTS_SECTION, consultant_prompts.QUESTION_HINTS_SECTION, "Question hints block"),
            (PromptType.PILLAR_REALITY, consultant_prompts.PILLAR_REALITY, "Analysis pillar: reality"),
            (PromptType.PILLAR_POTENTIAL, consultant_prompts.PILLAR_POTENTIAL, "Analysis pillar: potential"),
            (PromptType.PILLAR_STRATEGIC, consultant_prompts.PILLAR_STRATEGIC, "Analysis pillar: strategy"),
        ]
        for prompt_type, template, description in consultant:
            self.add_prompt(Prompt(
                key=prompt_type.value,
                template=template,
                category=PromptCategory.CONSULTANT,
                description=description
            ))

    def add_prompt(self, prompt: Prompt):
        """Add a prompt to the manager"""
        if prompt.key in self.prompts:
            logger.warning(f"Overwriting existing prompt: {prompt.key}")
        self.prompts[prompt.key] = prompt

    def get(self, key: str, **kwargs) -> str:
        """
        Get a formatted prompt by key.

        Raises:
            PromptError: If prompt not found or formatting fails
        """
        if not self._loaded:
            self.load_prompts()

        if key not in self.prompts:
            raise PromptError(
                f"Prompt not found: {key}",
                prompt_type=key,
                details={"available_keys": list(self.prompts.keys())}
            )

        prompt = self.prompts[key]

        if not prompt.variables and not kwargs:
            return prompt.template

        return prompt.format(**kwargs)

