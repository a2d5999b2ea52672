from __future__ import annotations
import json
from typing import Dict, List, Optional, Sequence

from loguru import logger

from .errors import InvalidConversationError
from .models import Context, Conversation, Message, ProjectSettings, ToolInvocation
from .system_prompt import build_system_prompt, resolve_flags

# very rough token estimator (~4 chars per token)
_DEF_TOKENS_PER_CHAR = 1 / 4.0

# room kept free for images, provider overhead and the model's own answer
RESERVED_TOKENS = 1500
# history kept out of the document budget (last N messages)
RECENT_MESSAGES = 4

RETRIEVED_DOCUMENTS_INSTRUCTIONS = (
    "<RetrievedDocumentsInstructions>\n"
    "The following are passages retrieved via RAG from a large dataset. They may be relevant but aren't "
    "guaranteed to be. Evaluate critically, use what's pertinent, and disregard irrelevant info. When using "
    "information from these passages, place citations before the period, using the exact same XML citation "
    "format shown in the examples above (e.g., \"This is a statement <cite>1</cite>.\").\n"
    "</RetrievedDocumentsInstructions>"
)

TOOL_INSTRUCTIONS = (
    "<Tool Instructions>The user query required the invocation of external tools, and now it's your job to "
    "use the tool outputs and any other information to craft a great response. All tool invocations have "
    "already been completed before you saw this message; do not attempt to invoke any tools yourself. If any "
    "tools errored out, inform the user. If the tool outputs are irrelevant to their query, let the user know. "
    "Always use the past tense to refer to the tool outputs and name the tool you used, e.g. "
    "'According to tool `tool name` ...'. Never fabricate tool results.</Tool Instructions>"
)

_DOC_SEPARATOR = "---\n"


def approx_tokens(text: str) -> int:
    if not text:
        return 0
    return max(1, int(len(text) * _DEF_TOKENS_PER_CHAR))


def message_text(message: Message) -> str:
    """Only what the user typed: plain content or the text parts joined by newlines."""
    content = message.content
    if isinstance(content, str):
        return content
    return "\n".join(part.text or "" for part in content if part.type == "text")


def citation_map(contexts: Sequence[Context]) -> Dict[int, Context]:
    """Citation number -> context. Numbers are 1-based retrieval ranks."""
    return {i + 1: ctx for i, ctx in enumerate(contexts)}


def _doc_entry(number: int, ctx: Context) -> str:
    page = f", page: {ctx.pagenumber}" if ctx.pagenumber not in (None, "") else ""
    return f"{number}: {ctx.readable_filename}{page}\n{ctx.text}\n"


def build_documents_block(contexts: Sequence[Context], token_limit: int = 8000) -> Optional[str]:
    """Numbered document listing, dropping entries that overflow the budget.

    Dropped entries do not shift the numbers of the remaining ones.
    """
    if not contexts:
        return None
    used = 0
    kept: List[str] = []
    for number, ctx in citation_map(contexts).items():
        entry = _doc_entry(number, ctx)
        n = approx_tokens(_DOC_SEPARATOR + entry)
        if used + n > token_limit:
            continue
        used += n
        kept.append(entry)
    if not kept:
        return None
    return _DOC_SEPARATOR.join(kept)


def build_tool_outputs(tools: Sequence[ToolInvocation]) -> str:
    lines = [
        "The following API(s), aka tool(s), were invoked, and here's the tool output(s). Use this information "
        "when relevant in crafting your response.",
        "<Tool Outputs>",
    ]
    for tool in tools:
        out = tool.output
        if out is not None and out.text:
            lines.append(f"Tool: {tool.readableName}\nOutput: {out.text}")
        elif out is not None and out.imageUrls:
            lines.append(f"Tool: {tool.readableName}\nOutput: Images were generated by this tool call")
        elif out is not None and out.data is not None:
            lines.append(f"Tool: {tool.readableName}\nOutput: {json.dumps(out.data)}")
        elif tool.error:
            lines.append(f"Tool: {tool.readableName}\n{tool.error}")
    lines.append("</Tool Outputs>")
    return "\n".join(lines)


def _recent_tokens(messages: Sequence[Message]) -> int:
    return sum(approx_tokens(m.content) for m in messages[-RECENT_MESSAGES:] if isinstance(m.content, str))


def build_prompt(
    conversation: Conversation,
    settings: Optional[ProjectSettings] = None,
    contexts: Optional[Sequence[Context]] = None,
) -> Conversation:
    """
    Return a copy of `conversation` whose last message carries the engineered
    prompt (`finalPromtEngineeredMessage`) and the active system instructions
    (`latestSystemMessage`). Message count and order are unchanged.

    `contexts` defaults to the retrieval results attached to the last message.
    """
    if not conversation.messages:
        raise InvalidConversationError("Conversation messages array is empty")

    convo = conversation.model_copy(deep=True)
    last = convo.messages[-1]
    if contexts is None:
        contexts = list(last.contexts or [])

    flags = resolve_flags(convo, settings)
    use_documents = bool(contexts) and not flags.system_prompt_only
    system_prompt = build_system_prompt(convo, settings, has_contexts=use_documents)

    budget = convo.model.tokenLimit - RESERVED_TOKENS - approx_tokens(system_prompt)
    user_query = f"\n<User Query>\n{message_text(last)}\n</User Query>"
    budget -= approx_tokens(user_query)
    budget -= _recent_tokens(convo.messages)

    sections: List[str] = []
    if use_documents:
        documents = build_documents_block(contexts, token_limit=max(0, budget))
        if documents:
            block = f"{RETRIEVED_DOCUMENTS_INSTRUCTIONS}\n\n<PotentiallyRelevantDocuments>\n{documents}</PotentiallyRelevantDocuments>"
            budget -= approx_tokens(block)
            sections.append(block)

    if last.tools:
        sections.append(TOOL_INSTRUCTIONS)
        sections.append(build_tool_outputs(last.tools))

    sections.append(user_query)

    last.finalPromtEngineeredMessage = "\n\n".join(sections)
    last.latestSystemMessage = system_prompt
    logger.debug(
        f"Prompt built - conversation={convo.id}, contexts={len(contexts)}, "
        f"documents={use_documents}, remaining_budget={budget}"
    )
    return convo
