"""
Topic system prompts and prompt rendering.
"""
from typing import Optional, Sequence

from mise.models import Message, Topic

SYSTEM_PROMPTS = {
    Topic.CODING: (
        "You are an expert TypeScript/JavaScript developer. "
        "Provide accurate, production-ready code solutions."
    ),
    Topic.MLB: (
        "You are knowledgeable about baseball and MLB. "
        "Provide accurate statistics and insights."
    ),
    Topic.COOKING: (
        "You are an experienced chef. "
        "Provide practical cooking advice and recipes."
    ),
    Topic.FITNESS: (
        "You are a fitness expert specializing in kettlebells and strength training."
    ),
    Topic.GENERAL: (
        "You are a helpful AI assistant. "
        "Provide accurate and useful information."
    ),
}


def system_prompt_for(topic: Optional[str]) -> str:
    return SYSTEM_PROMPTS.get(Topic.parse(topic), SYSTEM_PROMPTS[Topic.GENERAL])


def build_prompt(query: str, history: Sequence[Message], topic: Optional[str]) -> str:
    """Render the system prompt, prior turns and the new query as one prompt."""
    parts = [system_prompt_for(topic), ""]
    if history:
        transcript = "\n".join(f"{m.role}: {m.content}" for m in history)
        parts.append(f"Previous conversation:\n{transcript}\n")
    parts.append(f"User: {query}\nAssistant:")
    return "\n".join(parts)
