# consultor/core/exceptions.py
"""
Consultor Exceptions - standardized error handling for the consultation service.

This module defines all custom exceptions used in the system,
providing consistent error handling and debugging information.
"""

from typing import Optional, Dict, Any


class ConsultorError(Exception):
    """Base exception for all consultation errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize base exception.

        Args:
            message: Human-readable error message
            details: Optional additional error details
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ValidationError(ConsultorError):
    """Errors in input validation and data integrity"""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize validation error.

        Args:
            message: Error description
            field: Field that failed validation
            value: Invalid value
            details: Additional validation context
        """
        super().__init__(message, details)
        self.field = field
        self.value = value

        if field:
            self.details['field'] = field
        if value is not None:
            self.details['value'] = str(value)


class ServiceError(ConsultorError):
    """Errors in external service interactions"""

    def __init__(
        self,
        message: str,
        service_name: Optional[str] = None,
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize service error.

        Args:
            message: Error description
            service_name: Name of the failing service
            operation: Operation that failed
            details: Additional service context
        """
        super().__init__(message, details)
        self.service_name = service_name
        self.operation = operation

        if service_name:
            self.details['service'] = service_name
        if operation:
            self.details['operation'] = operation


class AgentError(ConsultorError):
    """Errors while an agent generates content"""

    def __init__(
        self,
        message: str,
        agent_name: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details)
        self.agent_name = agent_name

        if agent_name:
            self.details['agent'] = agent_name


class ConfigurationError(ConsultorError):
    """Errors in system configuration and interview definitions"""

    def __init__(
        self,
        message: str,
        component: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize configuration error.

        Args:
            message: Error description
            component: Component or definition element with the issue
            details: Additional configuration context
        """
        super().__init__(message, details)
        self.component = component

        if component:
            self.details['component'] = component


class PromptError(ConsultorError):
    """Errors in prompt management and template processing"""

    def __init__(
        self,
        message: str,
        prompt_type: Optional[str] = None,
        template_vars: Optional[Dict[str, Any]] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details)
        self.prompt_type = prompt_type
        self.template_vars = template_vars or {}

        if prompt_type:
            self.details['prompt_type'] = prompt_type
        if template_vars:
            self.details['template_vars'] = template_vars


class GPTServiceError(ServiceError):
    """Specific errors for GPT service interactions"""

    def __init__(
        self,
        message: str,
        model: Optional[str] = None,
        prompt_length: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize GPT service error.

        Args:
            message: Error description
            model: GPT model that failed
            prompt_length: Length of prompt that failed
            details: Additional GPT context
        """
        super().__init__(message, service_name="GPT", details=details)
        self.model = model
        self.prompt_length = prompt_length

        if model:
            self.details['model'] = model
        if prompt_length:
            self.details['prompt_length'] = prompt_length


class PersistenceError(ServiceError):
    """Errors while durably recording a finished consultation"""

    def __init__(
        self,
        message: str,
        user_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, service_name="TranscriptStore", operation="save", details=details)
        self.user_id = user_id

        if user_id:
            self.details['user_id'] = user_id


class SessionError(ConsultorError):
    """Errors in session management and state handling"""

    def __init__(
        self,
        message: str,
        session_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details)
        self.session_id = session_id

        if session_id:
            self.details['session_id'] = session_id
