from enum import Enum

from pydantic import BaseModel


class BasePydanticModel(BaseModel):
    model_config = {
        "extra": "forbid",
        "populate_by_name": True,
        "use_enum_values": True,
    }

class WireModel(BaseModel):
    """Base for MCP payloads received from peers. Unknown members are ignored so newer
    servers can add fields without breaking decoding; dump with ``by_alias=True``."""
    model_config = {
        "extra": "ignore",
        "populate_by_name": True,
    }

class TransportKind(str, Enum):
    SUBPROCESS = "subprocess"
    REMOTE = "remote"
    LOCAL = "local"

class ServerStatus(str, Enum):
    CONNECTED = "connected"
    UNREACHABLE = "unreachable" # Configured but initialize() failed; contributes no tools
    DISABLED = "disabled"

class CollisionPolicy(str, Enum):
    FIRST_REGISTERED_WINS = "first_registered_wins"
    LAST_REGISTERED_WINS = "last_registered_wins"

class ContentType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    RESOURCE = "resource"
