# dual-deck-console/console_engine/__init__.py

from .engine import AudioEngine
from .deck import Deck, DeckSnapshot
from .mixer_bus import MixerBus, MixRecorder
from .mix_loader import MixScriptLoader
from .track import Track, DecodeFailure, load_track

__all__ = ['AudioEngine', 'Deck', 'DeckSnapshot', 'MixerBus', 'MixRecorder',
           'MixScriptLoader', 'Track', 'DecodeFailure', 'load_track']
