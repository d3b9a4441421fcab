"""
Analysis — prompt context assembly and LLM dispatch.

Public API
----------
- :func:`build_context_block` / :func:`build_context_summary` — render
  search results for a prompt.
- :func:`generate` — send a prompt to the configured chat vendor.
- :class:`Completion` — vendor-neutral reply.
"""

from clinical_rag.analysis.llm import ChatConfig, Completion, generate, get_chat_model
from clinical_rag.analysis.prompts import (
    AnalysisType,
    PatientProfile,
    build_context_block,
    build_context_summary,
)

__all__ = [
    "AnalysisType",
    "ChatConfig",
    "Completion",
    "PatientProfile",
    "build_context_block",
    "build_context_summary",
    "generate",
    "get_chat_model",
]
