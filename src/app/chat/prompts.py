"""System prompt assembly for widget chat turns."""

from __future__ import annotations

from src.app.schemas.chat import WidgetRead

BASE_INSTRUCTIONS = """You are a helpful customer service assistant for {widget_name}. Keep your responses conversational and concise.

Response Guidelines:
- Keep answers to 2-4 sentences for simple questions
- Only use bullet points when listing 3 or more items
- Match the visitor's language
- If you don't know something, say: "I don't have that specific information, but I can connect you with someone who can help."
- Never invent prices, policies or features that are not in the knowledge base"""

BUSINESS_INSTRUCTIONS = """BUSINESS INSTRUCTIONS:
{instructions}"""

KNOWLEDGE_SECTION = """KNOWLEDGE BASE:
{context}

Answer the visitor's question based on the knowledge above."""

CONTACT_NUDGE = """CONTACT INFO:
The visitor has not shared contact details yet. When it fits naturally, offer to have someone follow up and ask for their email address or phone number. Ask at most once per reply and do not insist."""


def build_system_prompt(
    widget: WidgetRead,
    knowledge_context: str = "",
    ask_for_contact: bool = False,
) -> str:
    """Assemble the system prompt for one chat turn.

    Sections are joined with blank lines; the knowledge section is omitted
    entirely when ``knowledge_context`` is empty.
    """
    sections = [BASE_INSTRUCTIONS.format(widget_name=widget.name)]
    if widget.ai_instructions and widget.ai_instructions.strip():
        sections.append(BUSINESS_INSTRUCTIONS.format(instructions=widget.ai_instructions.strip()))
    if knowledge_context:
        sections.append(KNOWLEDGE_SECTION.format(context=knowledge_context))
    if ask_for_contact:
        sections.append(CONTACT_NUDGE)
    return "\n\n".join(sections)
