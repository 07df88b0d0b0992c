"""
Error classification for runner output.

The first lines of an error block (before any code frame or stack frame)
are the thrown message and are the strongest signal, so they are matched
first. Only when the message says nothing recognizable is the whole block,
code frames included, searched.
"""
import re
import textwrap
from typing import List, Optional, Pattern, Sequence, Tuple

from jestparallel.types import FailureType, HookType

ANSI_PATTERN = re.compile(r"\x1b\[[0-9;?]*[A-Za-z]")
STACK_FRAME_PATTERN = re.compile(r"^\s*at\s+(.+?(?::\d+:\d+\)?|\(native\)|<anonymous>\)?))\s*$")
CODE_FRAME_PATTERN = re.compile(r"^\s*>?\s*\d+\s*\|")

EXPLICIT_TIMEOUT = re.compile(r"Exceeded timeout of|\btimed out\b", re.IGNORECASE)

ASSERTION_PATTERN = re.compile(
    r"expect\(|AssertionError|^\s*Expected(?: value)?:|^\s*Received(?: value)?:"
    r"|\.(?:not\.)?to(?:Be|Equal|StrictEqual|Match|Throw|Contain|Have)\w*\(",
    re.MULTILINE,
)

# Priority order, first match wins
MESSAGE_RULES: Sequence[Tuple[FailureType, Pattern[str]]] = (
    (FailureType.TIMEOUT, EXPLICIT_TIMEOUT),
    (FailureType.ASSERTION_FAILURE, ASSERTION_PATTERN),
    (FailureType.TIMEOUT, re.compile(r"\btimeout\b", re.IGNORECASE)),
    (FailureType.REFERENCE_ERROR, re.compile(r"\bReferenceError\b")),
    (FailureType.TYPE_ERROR, re.compile(r"\bTypeError\b")),
    (FailureType.SYNTAX_ERROR, re.compile(r"\bSyntaxError\b")),
    (FailureType.RACE_CONDITION, re.compile(r"race condition|data race", re.IGNORECASE)),
)

HOOK_MENTION_PATTERNS: Sequence[Tuple[HookType, Pattern[str]]] = (
    (HookType.BEFORE_ALL, re.compile(r"\bbefore\s?all\b", re.IGNORECASE)),
    (HookType.BEFORE_EACH, re.compile(r"\bbefore\s?each\b", re.IGNORECASE)),
    (HookType.AFTER_ALL, re.compile(r"\bafter\s?all\b", re.IGNORECASE)),
    (HookType.AFTER_EACH, re.compile(r"\bafter\s?each\b", re.IGNORECASE)),
)

HOOK_FAILURE_TYPES = frozenset(hook.failure_type for hook in HookType)


def strip_ansi(text: str) -> str:
    return ANSI_PATTERN.sub("", text)


def normalize_block(lines: Sequence[str]) -> str:
    """Join collected lines, dropping the common indentation Jest adds."""
    return textwrap.dedent("\n".join(lines)).strip()


def extract_message(text: str) -> str:
    """The thrown message: everything before the first code or stack frame."""
    message: List[str] = []
    for line in text.splitlines():
        if CODE_FRAME_PATTERN.match(line) or STACK_FRAME_PATTERN.match(line):
            break
        message.append(line)
    return "\n".join(message).strip()


def extract_stack_trace(text: str) -> Tuple[str, ...]:
    """Call-frame lines (``at fn (file:line:col)``), without the ``at`` prefix."""
    frames = []
    for line in text.splitlines():
        match = STACK_FRAME_PATTERN.match(line)
        if match:
            frames.append(match.group(1))
    return tuple(frames)


def mentioned_hooks(text: str) -> List[HookType]:
    return [hook for hook, pattern in HOOK_MENTION_PATTERNS if pattern.search(text)]


def classify_error(text: str, hook: Optional[HookType] = None) -> FailureType:
    """
    Map an error block onto the failure taxonomy.

    Args:
        text: Accumulated error text
        hook: Set when the block came from a direct hook-failure header

    Returns:
        FailureType for the block
    """
    if hook is not None:
        return hook.failure_type

    message = extract_message(text)
    if message:
        for failure_type, pattern in MESSAGE_RULES:
            if pattern.search(message):
                return failure_type

    if EXPLICIT_TIMEOUT.search(text):
        return FailureType.TIMEOUT
    hooks = mentioned_hooks(text)
    if hooks:
        return hooks[0].failure_type
    for failure_type, pattern in MESSAGE_RULES:
        if pattern.search(text):
            return failure_type
    return FailureType.UNKNOWN_FAILURE


def hook_for_failure_type(failure_type: Optional[FailureType]) -> Optional[HookType]:
    if failure_type not in HOOK_FAILURE_TYPES:
        return None
    for hook in HookType:
        if hook.failure_type == failure_type:
            return hook
    return None
