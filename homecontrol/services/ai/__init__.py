"""Irrigation advice backed by an optional LLM."""

from homecontrol.services.ai.irrigation_advisor import IrrigationAdvisor
from homecontrol.services.ai.llm_backends import LLMBackend, create_backend

__all__ = ["IrrigationAdvisor", "LLMBackend", "create_backend"]
