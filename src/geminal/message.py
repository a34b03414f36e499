from enum import Enum
from pydantic import BaseModel, ConfigDict, field_serializer


class TurnRole(Enum):
    USER = "user"
    ASSISTANT = "assistant"


# The service calls the assistant role "model".
WIRE_ROLES = {
    TurnRole.USER: "user",
    TurnRole.ASSISTANT: "model",
}


class Turn(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: TurnRole
    text: str

    @field_serializer('role')
    def serialize_role(self, role: TurnRole, _info) -> str:
        return role.value

    def to_content(self) -> dict:
        """Render this turn as a request ``contents`` entry."""
        return {
            "role": WIRE_ROLES[self.role],
            "parts": [{"text": self.text}],
        }
