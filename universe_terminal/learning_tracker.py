# --- API DOCUMENTATION for universe_terminal/learning_tracker.py ---
#
# **Purpose:** Experience/level progression driven by completed commands,
# plus one-shot achievements, level rewards, keyword tips, per-level learning
# objectives and a learning path of lessons.
#
# **Public Functions:**
#
# def experience_for_command(command: str) -> int:
# def level_for_experience(experience: int, thresholds=DEFAULT_THRESHOLDS) -> Level:
#     """Highest level whose threshold has been reached. Pure."""
#
# **Public Classes:**
#
# class LearningTracker:
#     def __init__(self, thresholds=None, progress_store=None):
#
#     def record_command(self, command: str) -> CommandRecord:
#         """Grants experience for a completed command and applies every side effect."""
#
#     def grant_experience(self, amount: int) -> Optional[Level]:
#         """Adds experience; returns the new level if a level-up happened."""
#
#     def add_level_up_listener(self, listener: Callable[[Level], None]):
#     def get_tips(self, command: str) -> List[str]:
#     def next_objective(self) -> Optional[LearningObjective]:
#
# --- END API DOCUMENTATION ---

import logging
from enum import Enum
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)


class Level(Enum):
    BEGINNER = 0
    HACKER = 1
    DEVELOPER = 2
    ENGINEER = 3
    ARCHITECT = 4
    GRAND_MASTER = 5
    UNIVERSE_LORD = 6

    @property
    def title(self) -> str:
        return self.name.replace("_", " ").title()


DEFAULT_THRESHOLDS: Dict[Level, int] = {
    Level.BEGINNER: 0,
    Level.HACKER: 100,
    Level.DEVELOPER: 500,
    Level.ENGINEER: 1000,
    Level.ARCHITECT: 2500,
    Level.GRAND_MASTER: 5000,
    Level.UNIVERSE_LORD: 10000,
}

# (features, themes, badges) unlocked on reaching a level.
LEVEL_REWARDS: Dict[Level, Tuple[Tuple[str, ...], Tuple[str, ...], Tuple[str, ...]]] = {
    Level.HACKER: ((), ("hacker_green",), ()),
    Level.DEVELOPER: (("split_terminal",), (), ()),
    Level.ENGINEER: (("ssh_manager",), (), ()),
    Level.ARCHITECT: ((), ("cyberpunk",), ()),
    Level.GRAND_MASTER: (("plugin_system",), (), ()),
    Level.UNIVERSE_LORD: ((), ("universe_lord",), ("👑",)),
}

TIP_RULES: List[Tuple[Callable[[str], bool], Tuple[str, ...]]] = [
    (lambda c: c.startswith("apt install"), (
        "💡 Pro tip: Use 'apt search <package>' to find packages",
        "📚 Try 'apt show <package>' for package details",
    )),
    (lambda c: c.startswith("git"), (
        "🔧 Pro tip: Use 'git status' to check your changes",
        "🌿 Remember to create branches: 'git checkout -b feature'",
    )),
    (lambda c: "rm" in c, (
        "⚠️ Always double-check before deleting files",
        "💡 Use 'ls' first to see what you're deleting",
    )),
]

ACHIEVEMENT_RULES: List[Tuple[Callable[[str], bool], str, str]] = [
    (lambda c: c.split()[:1] == ["sudo"], "Power User", "Used sudo command"),
    (lambda c: "nano" in c or "vim" in c, "Editor", "Used a text editor"),
    (lambda c: c.startswith("ssh"), "Remote Access", "Connected via SSH"),
    (lambda c: c.startswith("python"), "Developer", "Ran Python code"),
]


@dataclass(frozen=True)
class LearningObjective:
    title: str
    description: str
    commands: Tuple[str, ...]
    xp_reward: int


OBJECTIVES: Dict[Level, LearningObjective] = {
    Level.BEGINNER: LearningObjective(
        "Master Basic Navigation", "Learn to navigate the file system using ls, cd, and pwd",
        ("ls", "cd", "pwd"), 50),
    Level.HACKER: LearningObjective(
        "File Operations", "Create, copy, move, and delete files",
        ("touch", "cp", "mv", "rm"), 100),
    Level.DEVELOPER: LearningObjective(
        "Version Control with Git", "Initialize repository and make your first commit",
        ("git init", "git add", "git commit"), 200),
    Level.ENGINEER: LearningObjective(
        "Package Management", "Install and manage software packages",
        ("apt update", "apt install", "apt upgrade"), 300),
}


@dataclass(frozen=True)
class Lesson:
    name: str
    command: str
    description: str


@dataclass(frozen=True)
class LearningModule:
    id: str
    name: str
    lessons: Tuple[Lesson, ...]


LEARNING_PATH_NAME = "Linux Mastery Path"
LEARNING_PATH: Tuple[LearningModule, ...] = (
    LearningModule("basics", "Command Line Basics", (
        Lesson("Navigation", "ls", "Learn to list files"),
        Lesson("Changing Directories", "cd", "Navigate through folders"),
        Lesson("Print Working Directory", "pwd", "See your current location"),
    )),
    LearningModule("files", "File Management", (
        Lesson("Create Files", "touch", "Create empty files"),
        Lesson("Copy Files", "cp", "Duplicate files and directories"),
        Lesson("Move Files", "mv", "Move or rename files"),
        Lesson("Remove Files", "rm", "Delete files (carefully!)"),
    )),
    LearningModule("viewing", "Viewing Files", (
        Lesson("Display Content", "cat", "Show file contents"),
        Lesson("Page Through", "less", "View long files page by page"),
        Lesson("Head", "head", "Show first few lines"),
        Lesson("Tail", "tail", "Show last few lines"),
    )),
)


def experience_for_command(command: str) -> int:
    if "--help" in command:
        return 5
    if command.startswith("git"):
        return 20
    if command.startswith("docker"):
        return 30
    return 10


def level_for_experience(experience: int, thresholds: Mapping[Level, int] = DEFAULT_THRESHOLDS) -> Level:
    reached = [level for level, threshold in thresholds.items() if experience >= threshold]
    return max(reached, key=lambda level: level.value, default=Level.BEGINNER)


def thresholds_from_config(config: Dict[str, Any]) -> Dict[Level, int]:
    """Reads `learning.level_thresholds` ({"HACKER": 100, ...}); unknown names are ignored."""
    raw = config.get("learning", {}).get("level_thresholds")
    if not raw:
        return dict(DEFAULT_THRESHOLDS)
    thresholds = {Level.BEGINNER: 0}
    for name, value in raw.items():
        try:
            thresholds[Level[name.upper()]] = int(value)
        except (KeyError, ValueError):
            logger.warning(f"Ignoring invalid level threshold entry '{name}': {value!r}")
    return thresholds


@dataclass
class ProgressionState:
    experience: int = 0
    achievements: Dict[str, str] = field(default_factory=dict)
    unlocked_features: List[str] = field(default_factory=list)
    unlocked_themes: List[str] = field(default_factory=list)
    badges: List[str] = field(default_factory=list)
    completed_lessons: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "experience": self.experience,
            "achievements": dict(self.achievements),
            "unlocked_features": list(self.unlocked_features),
            "unlocked_themes": list(self.unlocked_themes),
            "badges": list(self.badges),
            "completed_lessons": list(self.completed_lessons),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProgressionState":
        return cls(
            experience=max(int(data.get("experience", 0)), 0),
            achievements=dict(data.get("achievements", {})),
            unlocked_features=list(data.get("unlocked_features", [])),
            unlocked_themes=list(data.get("unlocked_themes", [])),
            badges=list(data.get("badges", [])),
            completed_lessons=list(data.get("completed_lessons", [])),
        )


class ProgressStore(Protocol):
    def load(self) -> Optional[ProgressionState]: ...

    def save(self, state: ProgressionState) -> None: ...


@dataclass(frozen=True)
class CommandRecord:
    """What a single completed command changed."""
    experience_gained: int
    new_level: Optional[Level] = None
    new_achievements: Tuple[str, ...] = ()
    completed_lessons: Tuple[str, ...] = ()


class LearningTracker:
    def __init__(self, thresholds: Optional[Mapping[Level, int]] = None,
                 progress_store: Optional[ProgressStore] = None):
        self.thresholds = dict(thresholds) if thresholds is not None else dict(DEFAULT_THRESHOLDS)
        self.progress_store = progress_store
        self._listeners: List[Callable[[Level], None]] = []

        state = progress_store.load() if progress_store is not None else None
        self.state = state or ProgressionState()
        self._level = level_for_experience(self.state.experience, self.thresholds)
        logger.info(f"LearningTracker ready: {self.state.experience} XP, level {self._level.name}")

    @property
    def level(self) -> Level:
        return self._level

    @property
    def experience(self) -> int:
        return self.state.experience

    def add_level_up_listener(self, listener: Callable[[Level], None]):
        self._listeners.append(listener)

    # --- Progression ---

    def record_command(self, command: str) -> CommandRecord:
        command = command.strip()
        xp = experience_for_command(command)
        new_level = self._add_experience(xp)
        new_achievements = self._check_achievements(command)
        completed = self._update_learning_path(command)
        self._persist()
        logger.debug(f"Recorded '{command}': +{xp} XP (total {self.state.experience})")
        return CommandRecord(xp, new_level, tuple(new_achievements), tuple(completed))

    def grant_experience(self, amount: int) -> Optional[Level]:
        new_level = self._add_experience(amount)
        self._persist()
        return new_level

    def _add_experience(self, amount: int) -> Optional[Level]:
        if amount < 0:
            raise ValueError(f"Experience grants must be non-negative, got {amount}")
        self.state.experience += amount
        new_level = level_for_experience(self.state.experience, self.thresholds)
        if new_level.value > self._level.value:
            self._level_up(new_level)
            return new_level
        return None

    def _level_up(self, new_level: Level):
        logger.info(f"Level up: {self._level.name} -> {new_level.name} at {self.state.experience} XP")
        self._level = new_level

        features, themes, badges = LEVEL_REWARDS.get(new_level, ((), (), ()))
        for rewards, unlocked in ((features, self.state.unlocked_features),
                               (themes, self.state.unlocked_themes),
                               (badges, self.state.badges)):
            unlocked.extend(item for item in rewards if item not in unlocked)

        for listener in list(self._listeners):
            try:
                listener(new_level)
            except Exception as e:
                logger.error(f"Level-up listener {listener!r} failed: {e}", exc_info=True)

    def _check_achievements(self, command: str) -> List[str]:
        unlocked = []
        for matches, title, description in ACHIEVEMENT_RULES:
            if title not in self.state.achievements and matches(command):
                self.state.achievements[title] = description
                unlocked.append(title)
                logger.info(f"Achievement unlocked: {title} ({description})")
        return unlocked

    def _update_learning_path(self, command: str) -> List[str]:
        name = command.split()[0] if command else ""
        completed = []
        for module in LEARNING_PATH:
            for lesson in module.lessons:
                if lesson.command == name and lesson.name not in self.state.completed_lessons:
                    self.state.completed_lessons.append(lesson.name)
                    completed.append(lesson.name)
        return completed

    def _persist(self):
        if self.progress_store is not None:
            self.progress_store.save(self.state)

    # --- Guidance ---

    def get_tips(self, command: str) -> List[str]:
        for matches, tips in TIP_RULES:
            if matches(command):
                return list(tips)
        return []

    def next_objective(self) -> Optional[LearningObjective]:
        return OBJECTIVES.get(self._level)

    def learning_path_progress(self) -> List[Tuple[LearningModule, int]]:
        """Each module of the learning path with its number of completed lessons."""
        done = set(self.state.completed_lessons)
        return [(module, sum(1 for lesson in module.lessons if lesson.name in done)) for module in LEARNING_PATH]
