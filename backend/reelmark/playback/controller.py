"""
Playback controller — applies playback commands to a player and advances
play-all and multi-segment reels as time passes.

The view dispatches a command; the player side calls ``apply_pending()``
once it is ready, then ``tick(t)`` on every time update.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional, Protocol, Sequence

from reelmark.playback.commands import (
    Pause,
    Play,
    PlayAll,
    PlaybackCommand,
    PlayCitations,
    PlaySegment,
    PlayTopic,
    Seek,
    build_citation_reel,
)
from reelmark.schemas.schemas import Topic

logger = logging.getLogger(__name__)

TIME_UPDATE_THROTTLE_SECONDS = 0.5


class Player(Protocol):
    def seek(self, time: float) -> None: ...
    def play(self) -> None: ...
    def pause(self) -> None: ...
    def report_duration(self) -> Optional[float]: ...


@dataclass(frozen=True)
class PlaybackState:
    current_time: float = 0.0
    is_playing: bool = False
    selected_topic: Optional[Topic] = None
    is_playing_all: bool = False
    play_all_index: int = 0
    segment_index: int = 0
    duration: Optional[float] = None


class PlaybackController:

    def __init__(
        self,
        player: Player,
        topics: Sequence[Topic] = (),
        on_time_update: Optional[Callable[[float], None]] = None,
        on_topic_select: Optional[Callable[[Topic], None]] = None,
    ):
        self.player = player
        self.topics: List[Topic] = list(topics)
        self.state = PlaybackState()
        self.pending: Optional[PlaybackCommand] = None
        self._on_time_update = on_time_update
        self._on_topic_select = on_topic_select
        self._last_reported_time = 0.0
        self._handlers: Dict[type, Callable] = {
            Seek: self._seek,
            PlayTopic: self._play_topic,
            PlaySegment: self._play_segment,
            PlayCitations: self._play_citations,
            PlayAll: self._play_all,
            Play: self._play,
            Pause: self._pause,
        }

    def set_topics(self, topics: Sequence[Topic]) -> None:
        self.topics = list(topics)
        if not self.topics and self.state.is_playing_all:
            self.state = replace(self.state, is_playing_all=False, play_all_index=0)

    # ── Commands ─────────────────────────────────────────────────────────

    def dispatch(self, command: PlaybackCommand) -> None:
        """Queue a command; a newer dispatch replaces an unapplied one."""
        self.pending = command

    def apply_pending(self) -> bool:
        """Execute the queued command exactly once. Returns False if nothing was queued."""
        command, self.pending = self.pending, None
        if command is None:
            return False
        if self.state.duration is None:
            self.state = replace(self.state, duration=self.player.report_duration())
        self.state = self._handlers[type(command)](self.state, command)
        return True

    def _select(self, state: PlaybackState, topic: Topic, **changes) -> PlaybackState:
        if self._on_topic_select is not None:
            self._on_topic_select(topic)
        return replace(state, selected_topic=topic, segment_index=0, **changes)

    def _seek(self, state: PlaybackState, cmd: Seek) -> PlaybackState:
        self.player.seek(cmd.time)
        return replace(state, current_time=cmd.time)

    def _play_topic(self, state: PlaybackState, cmd: PlayTopic) -> PlaybackState:
        if not cmd.topic.segments:
            return self._select(state, cmd.topic, is_playing_all=False)
        start = cmd.topic.segments[0].start
        self.player.seek(start)
        if cmd.auto_play:
            self.player.play()
        return self._select(
            state, cmd.topic,
            current_time=start,
            is_playing=state.is_playing or cmd.auto_play,
            is_playing_all=False,
        )

    def _play_segment(self, state: PlaybackState, cmd: PlaySegment) -> PlaybackState:
        self.player.seek(cmd.segment.start)
        self.player.play()
        return replace(state, current_time=cmd.segment.start, is_playing=True)

    def _play_citations(self, state: PlaybackState, cmd: PlayCitations) -> PlaybackState:
        if not cmd.citations:
            return state
        reel = build_citation_reel(cmd.citations)
        start = cmd.citations[0].start
        self.player.seek(start)
        if cmd.auto_play:
            self.player.play()
        return self._select(
            state, reel,
            current_time=start,
            is_playing=state.is_playing or cmd.auto_play,
            is_playing_all=False,
        )

    def _play_all(self, state: PlaybackState, cmd: PlayAll) -> PlaybackState:
        playable = [t for t in self.topics if t.segments]
        if not playable:
            return replace(state, is_playing_all=False)
        first = self.topics.index(playable[0])
        start = playable[0].segments[0].start
        self.player.seek(start)
        if cmd.auto_play:
            self.player.play()
        return self._select(
            state, playable[0],
            current_time=start,
            is_playing=state.is_playing or cmd.auto_play,
            is_playing_all=True,
            play_all_index=first,
        )

    def _play(self, state: PlaybackState, cmd: Play) -> PlaybackState:
        self.player.play()
        return replace(state, is_playing=True)

    def _pause(self, state: PlaybackState, cmd: Pause) -> PlaybackState:
        self.player.pause()
        return replace(state, is_playing=False)

    def toggle_play_all(self) -> None:
        """Stop play-all (and pause), or queue a fresh play-all from the first topic."""
        if self.state.is_playing_all:
            self.player.pause()
            self.state = replace(self.state, is_playing_all=False, is_playing=False, play_all_index=0)
            return
        self.dispatch(PlayAll(auto_play=True))

    # ── Time ─────────────────────────────────────────────────────────────

    def tick(self, current_time: float) -> PlaybackState:
        """Feed the player's current time; advances play-all and multi-segment reels."""
        state = replace(self.state, current_time=current_time)

        if state.is_playing_all and self.topics:
            state = self._advance_play_all(state)
        elif state.is_playing and state.selected_topic is not None and len(state.selected_topic.segments) > 1:
            state = self._advance_reel(state)

        self.state = state
        if abs(state.current_time - self._last_reported_time) >= TIME_UPDATE_THROTTLE_SECONDS:
            self._last_reported_time = state.current_time
            if self._on_time_update is not None:
                self._on_time_update(state.current_time)
        return state

    def _advance_play_all(self, state: PlaybackState) -> PlaybackState:
        index = state.play_all_index
        topic = self.topics[index] if index < len(self.topics) else None
        if topic is None or not topic.segments or state.current_time < topic.segments[0].end:
            return state

        next_index = index + 1
        while next_index < len(self.topics) and not self.topics[next_index].segments:
            next_index += 1
        if next_index >= len(self.topics):
            self.player.pause()
            logger.debug("Play-all finished")
            return replace(state, is_playing_all=False, is_playing=False)

        nxt = self.topics[next_index]
        start = nxt.segments[0].start
        self.player.seek(start)
        self.player.play()
        return self._select(state, nxt, current_time=start, is_playing=True, play_all_index=next_index)

    def _advance_reel(self, state: PlaybackState) -> PlaybackState:
        segments = state.selected_topic.segments
        current = segments[state.segment_index] if state.segment_index < len(segments) else None
        if current is None or state.current_time < current.end:
            return state

        if state.segment_index < len(segments) - 1:
            nxt = segments[state.segment_index + 1]
            self.player.seek(nxt.start)
            return replace(state, segment_index=state.segment_index + 1, current_time=nxt.start)

        self.player.pause()
        return replace(state, is_playing=False, segment_index=0)
