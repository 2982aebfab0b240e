"""
Prompt-to-action pipeline: parse, validate, execute, report.
"""

from .executor import ActionExecutor
from .intent_parser import IntentParser
from .llm_provider import CompletionClient
from .pipeline import AssistantPipeline, process_prompt
from .validator import IntentValidator

__all__ = [
    "ActionExecutor",
    "AssistantPipeline",
    "CompletionClient",
    "IntentParser",
    "IntentValidator",
    "process_prompt",
]
