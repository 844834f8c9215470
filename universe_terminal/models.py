# universe_terminal/models.py

import time
import uuid
from dataclasses import dataclass, field, asdict
from enum import Enum, auto
from typing import Any, Dict, List, Optional, Tuple, Union


class Severity(Enum):
    """Ordered severity of a safety finding."""
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4


class SplitOrientation(Enum):
    HORIZONTAL = "horizontal"
    VERTICAL = "vertical"


class ColorScheme(Enum):
    CLASSIC_GREEN = "classic_green"
    AMOLED_BLACK = "amoled_black"
    GLASSMORPHISM = "glassmorphism"
    CYBERPUNK = "cyberpunk"
    PROFESSIONAL_WHITE = "professional_white"


# --- Session state ---

@dataclass
class SessionStats:
    cpu_usage: float = 0.0      # percent
    memory_usage: int = 0       # bytes (resident set size)
    uptime: float = 0.0         # seconds since the session was created


@dataclass
class Tab:
    """An independent command input/output stream inside a session."""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    name: str = "terminal"
    command_history: List[str] = field(default_factory=list)
    current_input: str = ""
    font_size: float = 14.0
    color_scheme: ColorScheme = ColorScheme.CLASSIC_GREEN

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["color_scheme"] = self.color_scheme.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Tab":
        return cls(
            id=data["id"],
            name=data.get("name", "terminal"),
            command_history=list(data.get("command_history", [])),
            current_input=data.get("current_input", ""),
            font_size=float(data.get("font_size", 14.0)),
            color_scheme=ColorScheme(data.get("color_scheme", ColorScheme.CLASSIC_GREEN.value)),
        )


@dataclass
class Session:
    """An isolated working context: directory, environment and tabs."""
    id: str
    working_directory: str
    environment: Dict[str, str] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)
    tabs: List[Tab] = field(default_factory=list)
    is_split_mode: bool = False
    split_orientation: SplitOrientation = SplitOrientation.HORIZONTAL
    stats: SessionStats = field(default_factory=SessionStats)
    last_activity: float = field(default_factory=time.time)
    is_idle: bool = False

    def find_tab(self, tab_id: str) -> Optional[Tab]:
        for tab in self.tabs:
            if tab.id == tab_id:
                return tab
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Serializable form used by the session stores. Stats are runtime only."""
        return {
            "id": self.id,
            "working_directory": self.working_directory,
            "environment": dict(self.environment),
            "created_at": self.created_at,
            "tabs": [tab.to_dict() for tab in self.tabs],
            "is_split_mode": self.is_split_mode,
            "split_orientation": self.split_orientation.value,
            "last_activity": self.last_activity,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        return cls(
            id=data["id"],
            working_directory=data["working_directory"],
            environment=dict(data.get("environment", {})),
            created_at=float(data.get("created_at", time.time())),
            tabs=[Tab.from_dict(t) for t in data.get("tabs", [])],
            is_split_mode=bool(data.get("is_split_mode", False)),
            split_orientation=SplitOrientation(data.get("split_orientation", SplitOrientation.HORIZONTAL.value)),
            last_activity=float(data.get("last_activity", time.time())),
        )


# --- Commands and verdicts ---

@dataclass(frozen=True)
class ParsedCommand:
    name: str
    args: Tuple[str, ...] = ()


def parse_command(raw: str) -> ParsedCommand:
    """Whitespace tokenization of raw input into a command name and its arguments."""
    parts = raw.split()
    if not parts:
        return ParsedCommand(name="")
    return ParsedCommand(name=parts[0], args=tuple(parts[1:]))


@dataclass(frozen=True)
class SafetyVerdict:
    is_safe: bool
    reason: str = ""
    requires_authorization: bool = False
    severity: Severity = Severity.LOW


SAFE_VERDICT = SafetyVerdict(is_safe=True)


@dataclass(frozen=True)
class CommandFlag:
    flag: str
    description: str
    example: Optional[str] = None


@dataclass(frozen=True)
class CatalogEntry:
    name: str
    description: str
    flags: Tuple[CommandFlag, ...] = ()
    example: str = ""
    category: str = "miscellaneous"

    def find_flag(self, flag: str) -> Optional[CommandFlag]:
        for candidate in self.flags:
            if candidate.flag == flag:
                return candidate
        return None


# --- Command result events (closed sum type) ---

class ResultKind(Enum):
    OUTPUT = auto()
    ERROR = auto()
    BLOCKED = auto()
    COMPLETE = auto()


class Control(Enum):
    """UI-level side effects requested by a built-in."""
    CLEAR = auto()
    EXIT = auto()


@dataclass(frozen=True)
class Output:
    text: str
    working_directory: Optional[str] = None   # set by `cd`
    control: Optional[Control] = None
    kind = ResultKind.OUTPUT

    @property
    def is_terminal(self) -> bool:
        return False


@dataclass(frozen=True)
class Error:
    message: str
    exit_code: Optional[int] = None
    kind = ResultKind.ERROR

    @property
    def is_terminal(self) -> bool:
        return True


@dataclass(frozen=True)
class Blocked:
    command: str
    reason: str
    kind = ResultKind.BLOCKED

    @property
    def is_terminal(self) -> bool:
        return True


@dataclass(frozen=True)
class Complete:
    kind = ResultKind.COMPLETE

    @property
    def is_terminal(self) -> bool:
        return True


CommandResultEvent = Union[Output, Error, Blocked, Complete]


# --- Advisory events (closed sum type) ---

class AdvisoryKind(Enum):
    TYPO_CORRECTION = auto()
    SUGGESTIONS = auto()
    WARNING = auto()
    EXPLANATION = auto()
    LEARNING_TIP = auto()


@dataclass(frozen=True)
class CommandSuggestion:
    command: str
    description: str
    confidence: float


@dataclass(frozen=True)
class TypoCorrection:
    original: str
    correction: str
    confidence: float
    kind = AdvisoryKind.TYPO_CORRECTION


@dataclass(frozen=True)
class Suggestions:
    suggestions: Tuple[CommandSuggestion, ...]
    kind = AdvisoryKind.SUGGESTIONS


@dataclass(frozen=True)
class AdvisoryWarning:
    message: str
    severity: Severity
    kind = AdvisoryKind.WARNING


@dataclass(frozen=True)
class Explanation:
    text: str
    kind = AdvisoryKind.EXPLANATION


@dataclass(frozen=True)
class LearningTip:
    tips: Tuple[str, ...]
    kind = AdvisoryKind.LEARNING_TIP


AdvisoryEvent = Union[TypoCorrection, Suggestions, AdvisoryWarning, Explanation, LearningTip]
