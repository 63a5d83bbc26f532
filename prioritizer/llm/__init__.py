"""Reasoning service access and prompt construction."""

from prioritizer.llm.client import LLMClient, LLMResponse, Provider
from prioritizer.llm.prompts import PromptBuilder

__all__ = ["LLMClient", "LLMResponse", "PromptBuilder", "Provider"]
