from __future__ import annotations
from typing import Dict, List, Mapping, Optional, Tuple

from ..errors import InvalidConversationError
from ..models import Conversation
from ..prompt_builder import message_text

CITATION_REMINDER = (
    "\n\nIf you use the <Potentially Relevant Documents> in your response, please remember cite your "
    'sources using the required formatting, e.g. "The grass is green. [29, page: 11]'
)

# roles the chat backends accept for non-system turns
DEFAULT_ROLE_MAP: Mapping[str, str] = {"user": "user", "assistant": "assistant", "tool": "user"}


def require_messages(conversation: Optional[Conversation], provider: str) -> Conversation:
    if conversation is None:
        raise InvalidConversationError(f"{provider}: conversation is missing")
    if not conversation.messages:
        raise InvalidConversationError(f"{provider}: conversation messages array is empty")
    return conversation


def latest_system_message(conversation: Conversation) -> Optional[str]:
    for message in reversed(conversation.messages):
        if message.latestSystemMessage is not None:
            return message.latestSystemMessage
    return None


def to_chat_messages(
    conversation: Conversation,
    *,
    reminder: str = CITATION_REMINDER,
    role_map: Mapping[str, str] = DEFAULT_ROLE_MAP,
) -> List[Dict[str, str]]:
    """Flatten a conversation into [{role, content}] chat turns.

    The most recent `latestSystemMessage` leads as the system turn. System-role
    messages are otherwise dropped. The final message, when it is a user turn,
    carries the engineered prompt plus `reminder`; every other message keeps
    its own text. Order is preserved; nothing is merged.
    """
    out: List[Dict[str, str]] = []
    system = latest_system_message(conversation)
    if system is not None:
        out.append({"role": "system", "content": system})

    last_index = len(conversation.messages) - 1
    for index, message in enumerate(conversation.messages):
        if message.role == "system":
            continue
        if index == last_index and message.role == "user":
            engineered = message.finalPromtEngineeredMessage
            content = (engineered if engineered else message_text(message)) + reminder
        else:
            content = message_text(message)
        out.append({"role": role_map.get(message.role, message.role), "content": content})
    return out


def split_system(messages: List[Dict[str, str]]) -> Tuple[Optional[str], List[Dict[str, str]]]:
    """Separate the leading system turn for backends that take it out of band."""
    if messages and messages[0]["role"] == "system":
        return messages[0]["content"], messages[1:]
    return None, list(messages)
