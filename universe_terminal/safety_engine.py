# universe_terminal/safety_engine.py
#
# Classifies a command string into a SafetyVerdict. Pure and deterministic:
# no I/O, no state beyond the rule list compiled at construction time.

import os
import re
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Pattern, Sequence

from universe_terminal.models import SAFE_VERDICT, SafetyVerdict, Severity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DangerousPattern:
    name: str
    pattern: Pattern
    severity: Severity
    message: str


# Command position: start of input, after a separator, or after sudo.
_CMD_START = r"(?:^|[;&|(]\s*|\bsudo\s+)"

# Order is precedence: the first matching rule decides the verdict.
DEFAULT_PATTERN_SPECS = [
    {
        "name": "fork_bomb",
        "pattern": r":\(\)\s*\{\s*:\s*\|\s*:\s*&\s*\}\s*;\s*:",
        "severity": "CRITICAL",
        "message": "⛔ Fork bomb detected and blocked",
    },
    {
        "name": "recursive_delete",
        "pattern": r"\brm\s+(?:-\S*\s+)*(?:-[a-z]*[rf][a-z]*|--recursive|--force)(?:\s+-\S*)*\s+['\"]?(?:/|~|\*)",
        "severity": "CRITICAL",
        "message": "⚠️ DANGER: This will delete files permanently!",
    },
    {
        "name": "format_filesystem",
        "pattern": r"\bmkfs|" + _CMD_START + r"format\b|\bdd\s+.*\bof=/dev/(?!null\b|zero\b|stdout\b|stderr\b)",
        "severity": "CRITICAL",
        "message": "⛔ Format operations are blocked for safety",
    },
    {
        "name": "raw_device_write",
        "pattern": r">\s*/dev/(?:mem|kmem|port|sd[a-z]+|hd[a-z]+|nvme\d|mmcblk\d)",
        "severity": "CRITICAL",
        "message": "⛔ Direct hardware access is blocked",
    },
    {
        "name": "world_writable",
        "pattern": r"\bchmod\s+(?:-\S+\s+)*0?777\b",
        "severity": "HIGH",
        "message": "⚠️ WARNING: chmod 777 gives full permissions to everyone",
    },
    {
        "name": "remote_script",
        "pattern": r"\b(?:curl|wget)\b.*\|\s*(?:sudo\s+)?(?:sh|bash|zsh|dash|ksh|python3?|perl)\b",
        "severity": "HIGH",
        "message": "⚠️ Downloading and executing scripts can be dangerous",
    },
    {
        "name": "power_state",
        "pattern": _CMD_START + r"(?:shutdown|reboot|halt|poweroff)\b",
        "severity": "HIGH",
        "message": "⚠️ Power-state commands are blocked in the terminal",
    },
]

DEFAULT_PROTECTED_PATHS = ("/system", "/vendor", "/data", "/cache", "/sbin", "/etc", "/bin", "/dev")

REMOVAL_VERBS = frozenset({"rm", "rmdir", "mv", "unlink", "shred"})

SYSTEM_PATH_REASON = "⚠️ Modifying system files can break your device"

_TOKEN_SPLIT = re.compile(r"[\s;&|]+")


def _command_name(token: str) -> str:
    # \rm and /bin/rm both invoke rm.
    return os.path.basename(token.strip("'\"").lstrip("\\"))


def compile_patterns(specs: Iterable[Dict[str, Any]]) -> List[DangerousPattern]:
    """Compiles pattern specs, skipping (and logging) invalid entries."""
    compiled = []
    for spec in specs:
        try:
            compiled.append(DangerousPattern(
                name=spec.get("name", spec["pattern"]),
                pattern=re.compile(spec["pattern"], re.MULTILINE),
                severity=Severity[str(spec.get("severity", "HIGH")).upper()],
                message=spec.get("message", "⚠️ Command matches a dangerous pattern"),
            ))
        except re.error as e:
            logger.error(f"Invalid regex pattern in security config: '{spec.get('pattern')}'. Error: {e}")
        except KeyError as e:
            logger.error(f"Incomplete security pattern entry {spec!r}: missing or unknown {e}")
    return compiled


class SafetyEngine:
    """Ordered, first-match-wins command classifier."""

    def __init__(self, patterns: Optional[Sequence[DangerousPattern]] = None,
                 protected_paths: Optional[Sequence[str]] = None):
        self.patterns = tuple(patterns) if patterns is not None else tuple(compile_patterns(DEFAULT_PATTERN_SPECS))
        self.protected_paths = tuple(p.rstrip("/").lower() for p in (protected_paths or DEFAULT_PROTECTED_PATHS))
        logger.info(f"SafetyEngine initialized with {len(self.patterns)} patterns and "
                    f"{len(self.protected_paths)} protected paths.")

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "SafetyEngine":
        security = config.get("security", {})
        specs = security.get("dangerous_patterns")
        patterns = compile_patterns(specs) if specs else None
        return cls(patterns=patterns, protected_paths=security.get("protected_paths"))

    def check(self, command: str) -> SafetyVerdict:
        lowered = command.lower()
        if not lowered.strip():
            return SAFE_VERDICT

        for rule in self.patterns:
            if rule.pattern.search(lowered):
                logger.warning(f"Command matched dangerous pattern '{rule.name}' ({rule.severity.name}): '{command}'")
                return SafetyVerdict(
                    is_safe=False,
                    reason=rule.message,
                    requires_authorization=rule.severity is Severity.CRITICAL,
                    severity=rule.severity,
                )

        tokens = [t for t in _TOKEN_SPLIT.split(lowered) if t]
        if any(_command_name(t) in REMOVAL_VERBS for t in tokens):
            for arg in tokens:
                arg = arg.strip("'\"")
                if arg.startswith("/") and self.is_protected_path(arg):
                    logger.warning(f"Command targets protected path '{arg}': '{command}'")
                    return SafetyVerdict(
                        is_safe=False,
                        reason=SYSTEM_PATH_REASON,
                        requires_authorization=True,
                        severity=Severity.HIGH,
                    )

        return SAFE_VERDICT

    def is_protected_path(self, path: str) -> bool:
        path = path.lower()
        return any(path == prefix or path.startswith(prefix + "/") for prefix in self.protected_paths)
