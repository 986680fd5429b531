# consultor/prompts/__init__.py
"""Prompts package - centralized prompt management"""

from . import consultant_prompts
from . import common_prompts

__all__ = [
    'consultant_prompts',
    'common_prompts'
]
