"""Cross-step passes run after every log has been interpreted."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from ..constants import StatebagKey
from ..framework import elapsed_ms
from .journey import TraceStep

LOGGER = logging.getLogger(__name__)

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")


@dataclass(frozen=True)
class PostProcessorResult:
    success: bool = True
    errors: list[str] = field(default_factory=list)


class PostProcessor:
    name = "post-processor"

    def process(self, steps: list[TraceStep]) -> PostProcessorResult:
        raise NotImplementedError


class StepDurationProcessor(PostProcessor):
    """Milliseconds until the next step; the last step has none."""

    name = "step-duration"

    def process(self, steps: list[TraceStep]) -> PostProcessorResult:
        for current, following in zip(steps, steps[1:]):
            current.duration = max(0, elapsed_ms(current.timestamp, following.timestamp))
        if steps:
            steps[-1].duration = None
        return PostProcessorResult()


def _normalized(value: str) -> str:
    return _NON_ALNUM_RE.sub("", value.lower())


def match_selection(selection: str, options: list[str]) -> str | None:
    """Match a claims exchange id such as ``FacebookExchange`` to ``Facebook-OAUTH``."""
    for option in options:
        if option == selection:
            return option
    wanted = _normalized(selection)
    if wanted.endswith("exchange"):
        wanted = wanted[: -len("exchange")]
    if not wanted:
        return None
    for option in options:
        candidate = _normalized(option)
        if candidate == wanted or candidate.startswith(wanted):
            return option
    return None


class HrdSelectionResolver(PostProcessor):
    """Works out which identity provider the user picked on a selection page.

    The selection page offers several technical profiles; the choice shows
    up either on the step itself, in ``TAGE`` or in the step that follows.
    """

    name = "hrd-selection"

    def process(self, steps: list[TraceStep]) -> PostProcessorResult:
        for index, step in enumerate(steps):
            options = step.selectable_options
            if len(options) < 2 or step.selected_option in options:
                continue
            selected = self._resolve(step, steps[index + 1] if index + 1 < len(steps) else None)
            if selected:
                LOGGER.debug("step %d: user selected %s", step.sequence_number, selected)
                step.selected_option = selected
        return PostProcessorResult()

    def _resolve(self, step: TraceStep, following: TraceStep | None) -> str | None:
        own = next((profile for profile in step.technical_profiles if profile in step.selectable_options), None)
        if own:
            return own
        for selection in (step.statebag_snapshot.get(StatebagKey.TAGE), step.selected_option):
            if selection:
                matched = match_selection(selection, step.selectable_options)
                if matched:
                    return matched
        if following is None:
            return None
        return next((profile for profile in following.technical_profiles if profile in step.selectable_options), None)


def default_post_processors() -> list[PostProcessor]:
    return [StepDurationProcessor(), HrdSelectionResolver()]
