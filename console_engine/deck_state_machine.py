# Deck state machine for the console
# Owns the per-deck mutable state and the Stopped/Playing/Paused transitions

from enum import Enum, auto
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional
import threading
import logging

import config

logger = logging.getLogger(__name__)

class PlaybackState(Enum):
    """Playback states of a deck"""
    STOPPED = auto()        # Track loaded (or not), position at cue
    PLAYING = auto()        # User wants playback (voice alive unless scratching)
    PAUSED = auto()         # Paused, position kept

class DeckEvent(Enum):
    """Events that can trigger state transitions"""
    LOAD = auto()
    PLAY = auto()
    PAUSE = auto()
    TRACK_END = auto()

@dataclass
class DeckState:
    """Complete per-deck state. Owned by one Deck and guarded by its lock."""
    playback: PlaybackState = PlaybackState.STOPPED
    is_playing: bool = False
    is_scratching: bool = False
    pitch_percent: float = 0.0
    pitch_bend: int = 0
    pitch_range: int = config.PITCH_RANGES[0]
    # Logical playhead while no voice exists
    paused_at_seconds: float = 0.0
    # Engine-clock reference converting elapsed time to logical time while voiced
    playback_start_time: float = 0.0
    volume: float = config.DEFAULT_DECK_VOLUME
    eq: Dict[str, float] = field(default_factory=lambda: {
        'low': config.EQ_LEVEL_DEFAULT, 'mid': config.EQ_LEVEL_DEFAULT, 'high': config.EQ_LEVEL_DEFAULT})
    track_name: Optional[str] = None
    record_angle: float = 0.0

    def effective_rate(self, bend_magnitude: float = config.BEND_MAGNITUDE) -> float:
        """1 + pitch/100 + bend * magnitude, recomputed from current state every time"""
        return 1.0 + self.pitch_percent / 100.0 + self.pitch_bend * bend_magnitude

class DeckStateMachine:
    """State machine guarding deck playback transitions"""

    # Valid state transitions
    VALID_TRANSITIONS = {
        PlaybackState.STOPPED: [PlaybackState.STOPPED, PlaybackState.PLAYING],
        PlaybackState.PLAYING: [PlaybackState.PAUSED, PlaybackState.STOPPED],
        PlaybackState.PAUSED: [PlaybackState.PLAYING, PlaybackState.STOPPED],
    }

    def __init__(self, deck_id: str, state: Optional[DeckState] = None):
        self.deck_id = deck_id
        self.state = state if state is not None else DeckState()
        self._state_lock = threading.RLock()
        self._observers: List[Callable[[PlaybackState, PlaybackState, DeckState], None]] = []

        logger.debug(f"Deck {deck_id} - State machine initialized in {self.state.playback}")

    def add_observer(self, callback: Callable[[PlaybackState, PlaybackState, DeckState], None]):
        """Add observer for state changes"""
        self._observers.append(callback)

    @property
    def current(self) -> PlaybackState:
        with self._state_lock:
            return self.state.playback

    def handle_event(self, event: DeckEvent) -> bool:
        """Apply an event. Invalid transitions are logged and ignored (returns False)."""
        with self._state_lock:
            current_state = self.state.playback
            new_state = self._get_next_state(current_state, event)

            if new_state is None:
                logger.warning(f"Deck {self.deck_id} - Invalid transition: {event} from {current_state}")
                return False

            self._transition_to_state(new_state, event)
            return True

    def _get_next_state(self, current_state: PlaybackState, event: DeckEvent) -> Optional[PlaybackState]:
        """Determine next state based on current state and event"""
        new_state = None
        if event == DeckEvent.LOAD:
            new_state = PlaybackState.STOPPED
        elif event == DeckEvent.PLAY:
            if current_state in (PlaybackState.STOPPED, PlaybackState.PAUSED):
                new_state = PlaybackState.PLAYING
        elif event == DeckEvent.PAUSE:
            if current_state == PlaybackState.PLAYING:
                new_state = PlaybackState.PAUSED
        elif event == DeckEvent.TRACK_END:
            if current_state == PlaybackState.PLAYING:
                new_state = PlaybackState.STOPPED

        # Check if transition is valid
        if new_state and new_state in self.VALID_TRANSITIONS.get(current_state, []):
            return new_state
        return None

    def _transition_to_state(self, new_state: PlaybackState, event: DeckEvent):
        old_state = self.state.playback
        self.state.playback = new_state
        self.state.is_playing = new_state == PlaybackState.PLAYING
        self._notify_observers(old_state, new_state)
        logger.debug(f"Deck {self.deck_id} - State transition: {old_state} -> {new_state} (event: {event})")

    def _notify_observers(self, old_state: PlaybackState, new_state: PlaybackState):
        """Notify all observers of state change"""
        for observer in self._observers:
            try:
                observer(old_state, new_state, self.state)
            except Exception as e:
                logger.error(f"Deck {self.deck_id} - Observer error: {e}")
