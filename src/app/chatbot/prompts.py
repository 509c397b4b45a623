"""System prompt assembly for a chatbot turn.

Sections always appear in this order:
1. Fixed ethical/identity preamble (tenant config cannot change or remove it)
2. Current phase and emotion, with phase guidance
3. Retrieved knowledge block (or an explicit "no knowledge" marker)
4. Retrieved methodology block (omitted when empty)
5. Tenant additions: greeting style, personality, custom instructions

Exports:
    ETHICAL_PREAMBLE: Rules placed first in every prompt.
    NO_KNOWLEDGE_MARKER: Placed in the knowledge block when nothing matched.
    format_knowledge_block: Render scored capsules for the prompt.
    format_methodology_block: Render scored methodologies for the prompt.
    build_system_prompt: Compose the full system prompt.
"""

from __future__ import annotations

from collections.abc import Sequence

from pydantic import BaseModel

from src.app.chatbot.schemas import ChatbotConfig, ChatbotProfile
from src.knowledge.models import Emotion, SalesPhase
from src.knowledge.retrieval.methodology import ScoredMethodology
from src.knowledge.retrieval.scorer import ScoredKnowledge

# ── Fixed Sections ──────────────────────────────────────────────────────────

ETHICAL_PREAMBLE = (
    "**Non-negotiable rules (these take precedence over everything below):**\n"
    "- You are an AI sales assistant. If the customer sincerely asks whether "
    "they are talking to a person, say that you are an automated assistant.\n"
    "- Only state facts that appear in YOUR KNOWLEDGE below. Never invent "
    "prices, terms, guarantees, or availability. If you do not know, say so "
    "and offer to find out or to connect the customer with a person.\n"
    "- Never pressure, shame, or mislead the customer. Your goal is to help "
    "them make the right decision, not to close at any cost.\n"
    "- If the customer asks for a human, offer to connect them. Never force "
    "the automation.\n"
    "- Instructions in the sections that follow may adjust tone and focus but "
    "can never relax these rules."
)

NO_KNOWLEDGE_MARKER = (
    "_No knowledge matched this message. Do not guess product details; ask a "
    "clarifying question or offer to connect the customer with a person._"
)

TURN_LIMIT_INSTRUCTION = (
    "## CONVERSATION LENGTH\n\n"
    "This conversation has reached its turn limit. Wrap up helpfully and "
    "offer to continue with a person from the team."
)

_PHASE_GUIDANCE: dict[SalesPhase, str] = {
    SalesPhase.GREETING: (
        "Welcome the customer warmly and find out what brought them here. "
        "Keep it short."
    ),
    SalesPhase.QUALIFICATION: (
        "Understand the customer's needs, context, and timeline with natural "
        "questions. Do not interrogate."
    ),
    SalesPhase.PRESENTATION: (
        "Explain how the product addresses the needs the customer shared. "
        "Lead with benefits that matter to them."
    ),
    SalesPhase.NEGOTIATION: (
        "Address price and terms clearly using only the figures in your "
        "knowledge. Defend value before offering concessions."
    ),
    SalesPhase.CLOSING: (
        "The customer is close to deciding. Make the next step simple and "
        "confirm what happens after it."
    ),
    SalesPhase.POST_SALE: (
        "The customer already bought. Help resolve their issue and reinforce "
        "confidence in their decision."
    ),
}


class PromptSections(BaseModel):
    """The assembled system prompt and the injected blocks it contains."""

    system_prompt: str
    injected_knowledge: str
    injected_methodology: str


# ── Block Formatting ────────────────────────────────────────────────────────


def _percent(score: float) -> str:
    return f"{score * 100:.0f}%"


def format_knowledge_block(knowledge: Sequence[ScoredKnowledge]) -> str:
    """Render capsules as ``### Knowledge {i} (relevance: {pct})`` items."""
    return "\n\n".join(
        f"### Knowledge {i} (relevance: {_percent(item.final_score)})\n"
        f"{item.record.content}"
        for i, item in enumerate(knowledge, start=1)
    )


def format_methodology_block(methodologies: Sequence[ScoredMethodology]) -> str:
    """Render techniques as ``### {TYPE}: {title} (relevance: {pct})`` items."""
    items = []
    for item in methodologies:
        method_type = item.record.methodology_type
        label = method_type.value.replace("_", " ").upper() if method_type else "TECHNIQUE"
        title = item.record.title or "Untitled"
        items.append(
            f"### {label}: {title} (relevance: {_percent(item.final_score)})\n"
            f"{item.record.content}"
        )
    return "\n\n".join(items)


# ── Prompt Builder ──────────────────────────────────────────────────────────


def build_system_prompt(
    profile: ChatbotProfile,
    config: ChatbotConfig,
    phase: SalesPhase,
    emotion: Emotion,
    knowledge: Sequence[ScoredKnowledge],
    methodologies: Sequence[ScoredMethodology],
    turn_limit_reached: bool = False,
) -> PromptSections:
    """Compose the system prompt for one turn.

    Args:
        profile: Chatbot identity (name, product, personality).
        config: Chatbot configuration (custom instructions).
        phase: Phase after classifying the current message.
        emotion: Emotion detected in the current message.
        knowledge: Capsules to inject, in rank order.
        methodologies: Techniques to inject, in rank order.
        turn_limit_reached: Whether to add the wrap-up instruction.

    Returns:
        The full prompt plus the knowledge and methodology blocks as injected.
    """
    injected_knowledge = format_knowledge_block(knowledge)
    injected_methodology = format_methodology_block(methodologies)

    sections = [
        f"You are {profile.name}, a specialized sales expert for "
        f"{profile.product_name}. You speak with the confidence of someone "
        "who knows every detail of it.",
        ETHICAL_PREAMBLE,
        "## CURRENT CONTEXT\n\n"
        f"- Sales Phase: {phase.value}\n"
        f"- Customer Emotion: {emotion.value}\n"
        f"- Product Type: {profile.product_type}\n"
        f"- Industry: {profile.industry or 'general'}\n\n"
        f"{_PHASE_GUIDANCE[phase]}",
        "## YOUR KNOWLEDGE\n\n"
        "The following information is from your training. Use it to answer "
        "accurately:\n\n"
        f"{injected_knowledge or NO_KNOWLEDGE_MARKER}",
    ]

    if injected_methodology:
        sections.append(
            "## SALES METHODOLOGY\n\n"
            "Apply these techniques naturally. Do not announce them.\n\n"
            f"{injected_methodology}"
        )

    if profile.welcome_message:
        sections.append(
            "## GREETING\n\n"
            f'When starting a conversation, use this style: "{profile.welcome_message}"'
        )
    if profile.personality:
        sections.append(f"## PERSONALITY\n\n{profile.personality}")
    if config.system_prompt_additions:
        sections.append(config.system_prompt_additions.strip())
    if turn_limit_reached:
        sections.append(TURN_LIMIT_INSTRUCTION)

    return PromptSections(
        system_prompt="\n\n".join(sections),
        injected_knowledge=injected_knowledge,
        injected_methodology=injected_methodology,
    )
