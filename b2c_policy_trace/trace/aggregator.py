"""Folding a log's clip sequence into handler groups."""

from __future__ import annotations

from dataclasses import dataclass, field

from .clips import (
    ActionClip,
    Clip,
    FatalExceptionClip,
    HandlerResultClip,
    HeadersClip,
    PredicateClip,
    TransitionClip,
    UnrecognizedClip,
)


@dataclass(frozen=True)
class HandlerGroup:
    """One handler invocation: the handler, the predicate that guarded it and its result."""

    handler_name: str
    predicate: str | None
    result: HandlerResultClip | None
    clips: list[Clip]
    clip_index: int


@dataclass(frozen=True)
class Transition:
    event_name: str
    state_name: str
    index: int


@dataclass
class ClipAggregation:
    groups: list[HandlerGroup] = field(default_factory=list)
    headers: HeadersClip | None = None
    transitions: list[Transition] = field(default_factory=list)
    fatal_exception: FatalExceptionClip | None = None
    malformed: list[UnrecognizedClip] = field(default_factory=list)


def _is_boundary(clip: Clip) -> bool:
    return isinstance(clip, (ActionClip, PredicateClip))


def find_next_handler_result(clips: list[Clip], start: int) -> HandlerResultClip | None:
    """First result at or after ``start``, stopping at the next Action or Predicate."""
    for clip in clips[start:]:
        if isinstance(clip, HandlerResultClip):
            return clip
        if _is_boundary(clip):
            break
    return None


def _group_end(clips: list[Clip], start: int) -> int:
    for index in range(start, len(clips)):
        if _is_boundary(clips[index]):
            return index
    return len(clips)


class ClipAggregator:
    def aggregate(self, clips: list[Clip]) -> ClipAggregation:
        aggregation = ClipAggregation()
        predicate: str | None = None
        group_start = 0

        for index, clip in enumerate(clips):
            if isinstance(clip, HeadersClip):
                if aggregation.headers is None:
                    aggregation.headers = clip
            elif isinstance(clip, TransitionClip):
                aggregation.transitions.append(Transition(clip.event_name, clip.state_name, index))
            elif isinstance(clip, FatalExceptionClip):
                aggregation.fatal_exception = clip
            elif isinstance(clip, UnrecognizedClip):
                if clip.problem:
                    aggregation.malformed.append(clip)
            elif isinstance(clip, PredicateClip):
                predicate = clip.handler
                group_start = index
            elif isinstance(clip, ActionClip):
                start = group_start if predicate is not None else index
                aggregation.groups.append(
                    HandlerGroup(
                        handler_name=clip.handler,
                        predicate=predicate,
                        result=find_next_handler_result(clips, index + 1),
                        clips=clips[start : _group_end(clips, index + 1)],
                        clip_index=index,
                    )
                )
                predicate = None
            elif isinstance(clip, HandlerResultClip) and predicate is not None:
                # A predicate whose result arrives with no action: the predicate is the handler.
                aggregation.groups.append(
                    HandlerGroup(
                        handler_name=predicate,
                        predicate=predicate,
                        result=clip,
                        clips=clips[group_start : index + 1],
                        clip_index=group_start,
                    )
                )
                predicate = None
        return aggregation
