"""Output grammar registry."""

from typing import Callable, Dict, List

from jestparallel.parsers.base import OutputGrammar, ParsedOutput, ParseSession, ParseState, RunnerSummary
from jestparallel.parsers.jest_text import JestGrammar, JestTextSession

_GRAMMARS: Dict[str, Callable[[], OutputGrammar]] = {}


def register_grammar(name: str, factory: Callable[[], OutputGrammar]) -> None:
    """Register an output grammar factory under ``name``."""
    _GRAMMARS[name] = factory


def get_grammar(name: str) -> OutputGrammar:
    """Create a grammar instance by name."""
    if name not in _GRAMMARS:
        raise KeyError(f"Output grammar '{name}' not registered. Available: {list_grammars()}")
    return _GRAMMARS[name]()


def list_grammars() -> List[str]:
    return sorted(_GRAMMARS)


register_grammar(JestGrammar.name, JestGrammar)

__all__ = [
    "JestGrammar",
    "JestTextSession",
    "OutputGrammar",
    "ParsedOutput",
    "ParseSession",
    "ParseState",
    "RunnerSummary",
    "get_grammar",
    "list_grammars",
    "register_grammar",
]
