import pytest

from persona_chat.chat.prompt import PromptAssembler
from persona_chat.domain.conversation import StoredMessage
from persona_chat.domain.exceptions import InvalidInput, PersonaNotFound
from persona_chat.domain.models import ChatMessage, ConversationTurn
from persona_chat.personas import Persona, PersonaRegistry


def _registry():
    return PersonaRegistry([
        Persona(id="hitesh", name="Hitesh", avatar="", system_prompt="You are Hitesh."),
        Persona(id="piyush", name="Piyush", avatar="", system_prompt="You are Piyush."),
    ])


def test_assemble_system_history_user_order():
    assembler = PromptAssembler(_registry(), max_history=20)
    history = [
        {"role": "user", "content": "hello"},
        {"role": "assistant", "content": "Haanji"},
    ]
    msgs = assembler.assemble("hitesh", "  kaise ho?  ", history)
    assert [m.role for m in msgs] == ["system", "user", "assistant", "user"]
    assert msgs[0].content == "You are Hitesh."
    assert msgs[-1].content == "kaise ho?"


def test_assemble_keeps_only_last_n_history_turns():
    assembler = PromptAssembler(_registry(), max_history=3)
    history = [{"role": "user" if i % 2 == 0 else "assistant", "content": f"m{i}"} for i in range(10)]
    msgs = assembler.assemble("hitesh", "next", history)
    assert [m.content for m in msgs[1:-1]] == ["m7", "m8", "m9"]


def test_assemble_with_zero_history_cap_drops_all_history():
    assembler = PromptAssembler(_registry(), max_history=0)
    msgs = assembler.assemble("hitesh", "hi", [{"role": "user", "content": "old"}])
    assert [m.role for m in msgs] == ["system", "user"]


def test_assemble_maps_stored_messages_by_sender():
    assembler = PromptAssembler(_registry(), max_history=20)
    history = [
        StoredMessage(id="1", persona_id="hitesh", sender="user", content="hi", timestamp="2024-01-01T00:00:00Z"),
        StoredMessage(id="2", persona_id="hitesh", sender="assistant", content="Haanji", timestamp="2024-01-01T00:00:01Z"),
        ChatMessage(role="user", content="again"),
    ]
    msgs = assembler.assemble("hitesh", "ok", history)
    assert [(m.role, m.content) for m in msgs[1:-1]] == [("user", "hi"), ("assistant", "Haanji"), ("user", "again")]


def test_assemble_turn():
    assembler = PromptAssembler(_registry(), max_history=20)
    msgs = assembler.assemble_turn(ConversationTurn(persona_id="piyush", user_text="Hey"))
    assert msgs[0].content == "You are Piyush."


@pytest.mark.parametrize("text", ["", "   ", "\n\t", None])
def test_assemble_rejects_blank_text(text):
    assembler = PromptAssembler(_registry())
    with pytest.raises(InvalidInput) as exc:
        assembler.assemble("hitesh", text)
    assert exc.value.code == "INVALID_MESSAGE"


def test_assemble_rejects_unknown_persona():
    assembler = PromptAssembler(_registry())
    with pytest.raises(PersonaNotFound) as exc:
        assembler.assemble("unknown", "hi")
    assert exc.value.code == "PERSONA_NOT_FOUND"
    assert "hitesh" in exc.value.details
    assert isinstance(exc.value, InvalidInput)


@pytest.mark.parametrize("history", ["not a list", {"role": "user"}, [{"role": "system", "content": "x"}], [{"role": "user"}]])
def test_assemble_rejects_malformed_history(history):
    assembler = PromptAssembler(_registry())
    with pytest.raises(InvalidInput) as exc:
        assembler.assemble("hitesh", "hi", history)
    assert exc.value.code == "INVALID_HISTORY"
