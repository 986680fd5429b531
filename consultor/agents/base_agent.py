# consultor/agents/base_agent.py
"""
Base Agent - prompt selection, parameter filling and text generation.

Key principles:
- No flow logic (handled by the orchestrator)
- Use PromptManager for all content
- Async-only methods
- Failures surface as AgentError
"""

from abc import ABC
from typing import Dict, Optional, Any

from consultor.core.prompt_manager import PromptManager, PromptType
from consultor.core.exceptions import AgentError
from consultor.services.gpt_service import GPTService


class BaseAgent(ABC):
    """
    Base class for all agents.

    Agents are responsible ONLY for:
    1. Prompt selection and parameter filling
    2. Calling the text generation service
    3. Shaping the generated text into the expected result
    """

    def __init__(
        self,
        name: str,
        role: str,
        prompt_manager: Optional[PromptManager] = None,
        gpt_service: Optional[GPTService] = None
    ):
        """
        Initialize the agent with required services.

        Args:
            name: Human-readable name of the agent
            role: Role identifier for attribution
            prompt_manager: Centralized prompt management
            gpt_service: GPT service for text generation
        """
        self.name = name
        self.role = role

        # Services - injected for testability
        self.prompt_manager = prompt_manager or PromptManager()
        self.gpt_service = gpt_service

        self._system_prompt: Optional[str] = None
        self._max_tokens = 800
        self._temperature = 0.7

    async def health_check(self) -> Dict[str, Any]:
        """
        Check if agent and its dependencies are healthy.
        """
        status = {
            "agent": self.name,
            "role": self.role,
            "healthy": True,
            "services": {}
        }

        try:
            self.prompt_manager.get_prompt(PromptType.FEEDBACK_FALLBACK)
            status["services"]["prompt_manager"] = "healthy"
        except Exception as e:
            status["services"]["prompt_manager"] = f"error: {str(e)}"
            status["healthy"] = False

        if self.gpt_service:
            try:
                service_status = await self.gpt_service.health_check()
                status["services"]["gpt_service"] = "healthy" if service_status.get("healthy", False) else "unhealthy"
                if not service_status.get("healthy", False):
                    status["healthy"] = False
            except Exception as e:
                status["services"]["gpt_service"] = f"error: {str(e)}"
                status["healthy"] = False
        else:
            status["services"]["gpt_service"] = "not configured"
            status["healthy"] = False

        return status

    async def generate_text_with_prompt(
        self,
        prompt_type: PromptType,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        **prompt_params
    ) -> str:
        """
        Generate text using a prompt from PromptManager.

        Args:
            prompt_type: Type of prompt to use
            max_tokens: Max tokens (defaults to agent default)
            temperature: Temperature (defaults to agent default)
            **prompt_params: Parameters for prompt formatting

        Returns:
            Generated text

        Raises:
            AgentError: If generation fails or returns nothing
        """
        if not self.gpt_service:
            raise AgentError(f"GPT service not available for agent {self.name}", agent_name=self.name)

        try:
            prompt = self.prompt_manager.get_prompt(prompt_type, **prompt_params)

            result = await self.gpt_service.complete(
                prompt=prompt,
                system_prompt=self._system_prompt,
                max_tokens=max_tokens or self._max_tokens,
                temperature=self._temperature if temperature is None else temperature
            )
        except Exception as e:
            raise AgentError(
                f"Text generation failed for {self.name}: {str(e)}",
                agent_name=self.name,
                details={"prompt_type": prompt_type.value}
            ) from e

        if not result or not result.strip():
            raise AgentError(
                f"Empty text generated for {self.name}",
                agent_name=self.name,
                details={"prompt_type": prompt_type.value}
            )

        return result.strip()

    def __str__(self) -> str:
        return f"{self.__class__.__name__}(name='{self.name}', role='{self.role}')"
