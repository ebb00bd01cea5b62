"""Agent prompt templates."""
from typing import List, Optional

from callagent.services.knowledge.models import KnowledgeResult

BASE_PERSONA = """You are a helpful voice assistant having a phone conversation.
Keep responses conversational, concise, and natural for spoken interaction.
Avoid long explanations unless specifically asked.
Do not use markdown, lists, or special characters - everything you write is read aloud."""

SUMMARY_SYSTEM_PROMPT = "You are a helpful assistant that summarizes phone conversations concisely."


def get_system_prompt(
    custom_prompt: Optional[str] = None,
    knowledge_results: Optional[List[KnowledgeResult]] = None,
    knowledge_requested: bool = False,
) -> str:
    """Generate the system prompt for a conversational turn."""
    prompt = BASE_PERSONA

    if custom_prompt:
        prompt += f"\n\nAdditional instructions: {custom_prompt}"

    if knowledge_requested:
        if knowledge_results:
            context = "\n\n".join(
                f"[Source {i}: {result.title}]\n{result.content}"
                for i, result in enumerate(knowledge_results, start=1)
            )
            prompt += f"""

Relevant information from the knowledge base:
{context}

Base your answer on the information above. If it does not cover the question,
say so briefly rather than guessing."""
        else:
            prompt += (
                "\n\nNo matching information was found in the knowledge base for this "
                "question. Answer from general knowledge if you can, and offer to connect "
                "the caller with a person for specifics."
            )

    return prompt


def get_summary_prompt(transcript: str) -> str:
    """Generate the user prompt asking for a conversation summary."""
    return f"Please provide a brief summary of this phone conversation:\n\n{transcript}"
