from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from backend.src.models.conversation import MessageRole
from backend.src.services.chatbot_cache import ChatbotSnapshot
from backend.src.services.context_builder import ContextAssembler, PromptContext, build_system_instruction
from backend.src.services.conversation_store import ConversationStore


async def _conversation_with(db, chatbot, count):
    store = ConversationStore(db)
    conversation = await store.get_or_create_conversation(chatbot.id, "ctx")
    for i in range(count):
        role = MessageRole.VISITOR if i % 2 == 0 else MessageRole.ASSISTANT
        await store.append_message(conversation.id, role, f"turn {i}")
    return store, conversation


async def test_history_never_exceeds_window(db, seeded_chatbot):
    store, conversation = await _conversation_with(db, seeded_chatbot, 15)
    snapshot = ChatbotSnapshot.from_model(seeded_chatbot)
    snapshot.settings["max_tokens"] = 50

    context = await ContextAssembler(store, window=10).build_prompt(snapshot, conversation.id)

    assert len(context.history) == 10
    assert [content for _, content in context.history] == [f"turn {i}" for i in range(5, 15)]


async def test_short_history_is_complete_and_chronological(db, seeded_chatbot):
    store, conversation = await _conversation_with(db, seeded_chatbot, 3)
    snapshot = ChatbotSnapshot.from_model(seeded_chatbot)

    context = await ContextAssembler(store, window=10).build_prompt(snapshot, conversation.id)

    assert context.history == (
        ("visitor", "turn 0"),
        ("assistant", "turn 1"),
        ("visitor", "turn 2"),
    )


async def test_prompt_combines_persona_and_knowledge_base(db, seeded_chatbot):
    store, conversation = await _conversation_with(db, seeded_chatbot, 1)
    snapshot = ChatbotSnapshot.from_model(seeded_chatbot)
    assembler = ContextAssembler(store, window=10)

    context = await assembler.build_prompt(snapshot, conversation.id)
    again = await assembler.build_prompt(snapshot, conversation.id)

    assert context == again
    assert context.chatbot_id == seeded_chatbot.id
    assert context.conversation_id == conversation.id
    assert 'named "Seed Bot"' in context.system_instruction
    assert "Your personality is: calm." in context.system_instruction
    assert context.grounding == "Fact one.\nFact two."

    system_prompt = context.system_prompt()
    assert system_prompt.index("Fact one.") < system_prompt.index("Fact two.")


def test_to_messages_maps_roles():
    snapshot = ChatbotSnapshot(
        id="b1", user_id="u1", name="Bot", description=None, personality="terse", knowledge_base=[]
    )
    context = PromptContext(
        chatbot_id="b1",
        conversation_id="c1",
        system_instruction=build_system_instruction(snapshot),
        grounding="",
        history=(("visitor", "hi"), ("assistant", "hello"), ("visitor", "hours?")),
    )
    messages = context.to_messages()

    assert isinstance(messages[0], SystemMessage)
    assert "Knowledge Base" not in messages[0].content
    assert [type(m) for m in messages[1:]] == [HumanMessage, AIMessage, HumanMessage]
    assert messages[-1].content == "hours?"
