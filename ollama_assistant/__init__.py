"""
ollama_assistant

AI-assisted code suggestions from a local Ollama-style model server.
Contains:
 - the CodeAssistant facade wiring history, context building, the model client,
   suggestion filtering, jump analysis and request coordination (assistant)
 - the interactive Rich console front end (cli)
"""

from .assistant import CodeAssistant, PipelineResult
from .utils.config_manager import AssistantConfig, ConfigManager

__all__ = [
    "CodeAssistant",
    "PipelineResult",
    "AssistantConfig",
    "ConfigManager",
]

__version__ = "0.1.0"
