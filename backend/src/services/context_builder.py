from dataclasses import dataclass, field
from typing import List, Tuple

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from backend.src.models.conversation import MessageRole
from backend.src.services.conversation_store import ConversationStore
from backend.src.services.chatbot_cache import ChatbotSnapshot

BEHAVIOUR_RULES = """Instructions:
- Be helpful, accurate, and engaging
- Stay in character based on your personality
- If you don't know something, admit it honestly
- Keep responses concise but informative
- Be respectful and professional at all times"""


@dataclass(frozen=True)
class PromptContext:
    chatbot_id: str
    conversation_id: str
    system_instruction: str
    grounding: str
    # (role, content) pairs, oldest first
    history: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)

    def system_prompt(self) -> str:
        prompt = self.system_instruction
        if self.grounding:
            prompt += f"\n\nKnowledge Base:\n{self.grounding}"
            prompt += "\n\nUse the knowledge base above to answer questions when relevant."
        return f"{prompt}\n\n{BEHAVIOUR_RULES}"

    def to_messages(self) -> List[BaseMessage]:
        """Renders the context as a LangChain chat transcript."""
        messages: List[BaseMessage] = [SystemMessage(content=self.system_prompt())]
        for role, content in self.history:
            if role == MessageRole.ASSISTANT.value:
                messages.append(AIMessage(content=content))
            else:
                messages.append(HumanMessage(content=content))
        return messages


def build_system_instruction(chatbot: ChatbotSnapshot) -> str:
    instruction = f'You are an AI assistant named "{chatbot.name}".'
    if chatbot.description:
        instruction += f" {chatbot.description}"
    instruction += f" Your personality is: {chatbot.personality}."
    return instruction


class ContextAssembler:
    """Builds the prompt for one turn: persona, knowledge base and recent history."""

    def __init__(self, store: ConversationStore, window: int = 10):
        self.store = store
        self.window = window

    async def build_prompt(self, chatbot: ChatbotSnapshot, conversation_id: str) -> PromptContext:
        recent = await self.store.recent_messages(conversation_id, self.window)
        history = tuple((m.role, m.content) for m in recent)

        return PromptContext(
            chatbot_id=chatbot.id,
            conversation_id=conversation_id,
            system_instruction=build_system_instruction(chatbot),
            grounding="\n".join(entry for entry in chatbot.knowledge_base if entry),
            history=history,
        )
