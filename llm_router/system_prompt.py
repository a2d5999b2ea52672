from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

from .models import Conversation, ProjectSettings


DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful teaching assistant for this project. Answer the user's question "
    "accurately and concisely, explain your reasoning step by step when it helps, and say "
    "plainly when you do not know something."
)

GUIDED_LEARNING_PROMPT = (
    "\n\nYou are in guided learning mode. Do not hand the student complete answers to "
    "assignment or exam style questions. Ask guiding questions, point to the relevant "
    "concepts and course materials, and let the student work through each step."
)

DOCUMENT_FOCUS_PROMPT = (
    "\n\nAnswer only from the provided course documents. If the documents do not contain "
    "the answer, say so and do not draw on outside knowledge."
)

MATH_NOTATION_PROMPT = (
    "\nWhen responding with equations, use MathJax/KaTeX notation. Equations should be wrapped in either:\n"
    "  * Single dollar signs $...$ for inline math\n"
    "  * Double dollar signs $$...$$ for display/block math\n"
    "  * Or \\[...\\] for display math"
)

_CITATION_RULES = """Please analyze and respond to the following question using the excerpts from the provided documents. These documents can be PDF files or web pages. You may also see output from API calls (labeled as "tools") and image descriptions. Use this information to craft a detailed and accurate answer.

When referencing information from the documents, you MUST include citations in your response. Place each citation at the end of a complete thought, immediately before the period, using XML-style citation tags:
- Use "<cite>1</cite>" when referencing document 1.

Examples:
- "A loop invariant holds before and after every iteration of the loop <cite>1</cite>."
- "Python lists are dynamic arrays that grow automatically when full <cite>2</cite>."

Citations in earlier messages may look different because of post-processing. Always use the XML-style format above in your responses."""

_GUIDED_CITATION_RULE = (
    "IMPORTANT: While in guided learning mode, you must still cite all relevant course materials "
    "using the exact citation format, even if they contain direct answers. Never omit relevant materials."
)

_OUTSIDE_KNOWLEDGE_RULE = (
    "If the answer is not in the provided documents, state so but still provide as helpful a "
    "response as possible to directly answer the question."
)

_TOOL_CITATION_RULE = """When using tool outputs in your response, place the tool reference at the end of the relevant statement, before the period, using code notation. For example: "The repository contains three JavaScript files `as per tool ls`." Always be honest and transparent about tool results.

The user message includes XML-style tags (e.g., <PotentiallyRelevantDocuments>, <Tool Outputs>). Integrate this information appropriately in your answer."""


@dataclass(frozen=True)
class PromptFlags:
    guided_learning: bool
    documents_only: bool
    system_prompt_only: bool
    # link parameter set but the project does not enable it project-wide
    append_guided_learning: bool
    append_documents_only: bool


def resolve_flags(conversation: Conversation, settings: Optional[ProjectSettings]) -> PromptFlags:
    link = conversation.linkParameters
    s = settings or ProjectSettings()
    link_guided = bool(link and link.guidedLearning)
    link_docs = bool(link and link.documentsOnly)
    link_sys_only = bool(link and link.systemPromptOnly)
    return PromptFlags(
        guided_learning=link_guided or s.guidedLearning,
        documents_only=link_docs or s.documentsOnly,
        system_prompt_only=link_sys_only or s.systemPromptOnly,
        append_guided_learning=link_guided and not s.guidedLearning,
        append_documents_only=link_docs and not s.documentsOnly,
    )


def build_citation_prompt(flags: PromptFlags) -> str:
    """Instructions appended to the system prompt when documents were retrieved."""
    if flags.system_prompt_only:
        return ""
    sections = [_CITATION_RULES]
    if flags.guided_learning:
        sections.append(_GUIDED_CITATION_RULE)
    if not flags.guided_learning and not flags.documents_only:
        sections.append(_OUTSIDE_KNOWLEDGE_RULE)
    sections.append(_TOOL_CITATION_RULE)
    return "\n\n".join(sections).strip()


def build_system_prompt(
    conversation: Conversation,
    settings: Optional[ProjectSettings],
    *,
    has_contexts: bool,
) -> str:
    """Compose the active system instructions.

    Base prompt (project or default), then guided-learning / documents-only
    directives enabled only through link parameters. Unless system-prompt-only
    is set, the math notation directive and (when documents were retrieved)
    the citation instructions follow.
    """
    flags = resolve_flags(conversation, settings)
    base = (settings.system_prompt if settings and settings.system_prompt else None) or DEFAULT_SYSTEM_PROMPT

    prompt = base
    if flags.append_guided_learning:
        prompt += GUIDED_LEARNING_PROMPT
    if flags.append_documents_only:
        prompt += DOCUMENT_FOCUS_PROMPT
    if flags.system_prompt_only:
        return prompt

    prompt += MATH_NOTATION_PROMPT
    if not has_contexts:
        return prompt.strip()
    return "\n\n".join(p for p in (prompt, build_citation_prompt(flags)) if p.strip())
