"""Deploy-facing logger with a deferred end-of-run summary."""

import logging
import math
import re
from typing import Iterable, Optional

from .models import RolloutOutcome

HEADING_WIDTH = 100

_SECRET_KIND = re.compile(r"kind:\s*Secret")


def indent_four(text) -> str:
    return "    " + str(text).replace("\n", "\n    ")


def to_sentence(parts: list[str]) -> str:
    """Join fragments the way a person would: "a", "a and b", "a, b, and c"."""
    if not parts:
        return ""
    if len(parts) == 1:
        return parts[0]
    if len(parts) == 2:
        return f"{parts[0]} and {parts[1]}"
    return f"{', '.join(parts[:-1])}, and {parts[-1]}"


class DeferredSummary:
    """Actions and paragraphs collected during a deploy and printed at the end."""

    def __init__(self):
        self.actions: list[str] = []
        self.paragraphs: list[str] = []

    def add_action(self, sentence_fragment: str) -> None:
        """
        Save a fragment for the first sentence of the summary.

        Example: add_action("created 3 secrets") then add_action("failed to deploy 2
        resources") produces "Created 3 secrets and failed to deploy 2 resources".
        """
        self.actions.append(sentence_fragment)

    def add_paragraph(self, paragraph: str) -> None:
        self.paragraphs.append(paragraph)

    def actions_sentence(self) -> Optional[str]:
        if not self.actions:
            return None
        sentence = to_sentence(self.actions)
        return sentence[:1].upper() + sentence[1:]


class DeployLogger(logging.LoggerAdapter):
    """
    Logger adapter used by every deploy phase.

    Prefixes each line with ``[context][namespace]`` and keeps a
    DeferredSummary that is flushed by print_summary().
    """

    def __init__(
        self,
        logger: Optional[logging.Logger] = None,
        context: Optional[str] = None,
        namespace: Optional[str] = None,
    ):
        super().__init__(logger or logging.getLogger("sentinel_rollout"), {})
        self.context = context
        self.namespace = namespace
        self.reset()

    def reset(self) -> None:
        self.summary = DeferredSummary()
        self._current_phase = 0

    def process(self, msg, kwargs):
        prefix = ""
        if self.context:
            prefix += f"[{self.context}]"
        if self.namespace:
            prefix += f"[{self.namespace}]"
        if prefix:
            msg = f"{prefix}\t{msg}"
        return msg, kwargs

    def blank_line(self, level: int = logging.INFO) -> None:
        self.log(level, "")

    def heading(self, text: str, secondary_msg: str = "", level: int = logging.INFO) -> None:
        padding = (HEADING_WIDTH - (len(text) + len(secondary_msg))) / 2
        self.blank_line(level)
        self.log(
            level,
            f"{'-' * math.floor(padding)}{text}{secondary_msg}{'-' * math.ceil(padding)}",
        )

    def phase_heading(self, phase_name: str) -> None:
        self._current_phase += 1
        self.heading(f"Phase {self._current_phase}: {phase_name}")

    def print_summary(self, outcome: RolloutOutcome) -> None:
        """Print the Result heading followed by all deferred actions and paragraphs."""
        labels = {
            RolloutOutcome.SUCCEEDED: "SUCCESS",
            RolloutOutcome.TIMED_OUT: "TIMED OUT",
            RolloutOutcome.FAILED: "FAILURE",
            RolloutOutcome.CONFIG_INVALID: "FAILURE",
        }
        level = logging.INFO if outcome == RolloutOutcome.SUCCEEDED else logging.CRITICAL
        self.heading("Result: ", labels[outcome], level=level)

        actions_sentence = self.summary.actions_sentence()
        if actions_sentence:
            self.log(level, actions_sentence)
            self.blank_line(level)

        paragraphs = self.summary.paragraphs
        for index, paragraph in enumerate(paragraphs):
            for line in paragraph.split("\n"):
                self.log(level, line)
            if index < len(paragraphs) - 1:
                self.blank_line(level)


def record_invalid_template(
    logger: DeployLogger,
    err: str,
    filename: Optional[str],
    content: Optional[str] = None,
) -> None:
    """Add a summary paragraph describing a manifest that could not be used."""
    message = f"Invalid template: {filename}\n"
    message += f"> Error message:\n{indent_four(err)}"
    if content:
        if _SECRET_KIND.search(content):
            message += "\n> Template content: Suppressed because it may contain a Secret"
        else:
            message += f"\n> Template content:\n{indent_four(content)}"
    logger.summary.add_paragraph(message)


def add_para_from_list(logger: DeployLogger, action: str, items: Iterable) -> None:
    logger.summary.add_action(action)
    logger.summary.add_paragraph("\n".join(f"- {item}" for item in items))
