import pytest
from pydantic import ValidationError

from geminal.message import Turn, TurnRole


def test_assistant_turn_uses_model_role_on_the_wire():
    turn = Turn(role=TurnRole.ASSISTANT, text="hello")
    assert turn.to_content() == {
        "role": "model",
        "parts": [{"text": "hello"}],
    }


def test_user_turn_content():
    turn = Turn(role=TurnRole.USER, text="hi")
    assert turn.to_content() == {"role": "user", "parts": [{"text": "hi"}]}


def test_dump_serializes_role_value():
    dumped = Turn(role=TurnRole.ASSISTANT, text="x").model_dump()
    assert dumped == {"role": "assistant", "text": "x"}


def test_turns_are_immutable():
    turn = Turn(role=TurnRole.USER, text="hi")
    with pytest.raises(ValidationError):
        turn.text = "changed"
