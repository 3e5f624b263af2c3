"""Decision requests — the one place reconciliation waits on a caller.

The reconciler never talks to a human. At every fork it builds a
:class:`DecisionRequest` with enumerated choices and hands it to a
decision handler, a plain callable returning the chosen choice id.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


class DecisionTopic:
    MISSING_DIRECTORY = "missing_directory"
    EXISTING_INSTALL = "existing_install"
    LEGACY_INSTALL = "legacy_install"
    UNMANAGED_INSTALL = "unmanaged_install"
    MODIFIED_FILES = "modified_files"
    EXPANSION_PACK = "expansion_pack"


@dataclass
class Choice:
    id: str
    label: str


@dataclass
class DecisionRequest:
    """A question with a fixed set of answers."""

    topic: str
    message: str
    choices: list[Choice] = field(default_factory=list)
    details: list[str] = field(default_factory=list)
    default: str = ""

    def __post_init__(self):
        if not self.choices:
            raise ValueError(f"Decision {self.topic!r} has no choices")
        if not self.default:
            self.default = self.choices[0].id

    @property
    def choice_ids(self) -> list[str]:
        return [c.id for c in self.choices]


DecisionHandler = Callable[[DecisionRequest], str]


def ask(handler: DecisionHandler, request: DecisionRequest) -> str:
    """Suspend on *handler* and validate its answer."""
    answer = handler(request)
    if answer not in request.choice_ids:
        raise ValueError(
            f"Invalid answer {answer!r} for {request.topic}; expected one of {request.choice_ids}"
        )
    logger.debug("Decision %s -> %s", request.topic, answer)
    return answer


def accept_defaults(request: DecisionRequest) -> str:
    """Headless handler: always take the request's default."""
    return request.default


class ScriptedDecisions:
    """Headless handler answering from a fixed script, per topic or in sequence.

    Answers given by topic win; otherwise the next sequential answer is
    used; with neither, the request's default is taken.
    """

    def __init__(self, answers: Iterable[str] = (), by_topic: dict[str, str] | None = None):
        self._queue = list(answers)
        self.by_topic = dict(by_topic or {})
        self.asked: list[DecisionRequest] = []

    def __call__(self, request: DecisionRequest) -> str:
        self.asked.append(request)
        if request.topic in self.by_topic:
            return self.by_topic[request.topic]
        if self._queue:
            return self._queue.pop(0)
        return request.default
