from enum import Enum, auto
import sys

# Node kinds and slot types are plain strings as declared by the remote schema.
NodeType = str
LinkType = str


class FieldKind(Enum):
    INT = auto()
    FLOAT = auto()
    STRING = auto()
    BOOLEAN = auto()
    SELECT = auto()
    CONNECTION = auto()
    UNKNOWN = auto()


# Type tags handed to the presentation layer so it can pick a widget.
# Connection fields use their link type as tag instead.
TY_INT = "Kira__Reserved_Int"
TY_FLOAT = "Kira__Reserved_Float"
TY_STRING = "Kira__Reserved_String"
TY_SELECT = "Kira__Reserved_Select"
TY_BOOL = "bool"
TY_UNKNOWN = "unknown"

DEFAULT_STEP = 0.01

INT_MIN = -sys.maxsize - 1
INT_MAX = sys.maxsize
FLOAT_MIN = -sys.float_info.max
FLOAT_MAX = sys.float_info.max
