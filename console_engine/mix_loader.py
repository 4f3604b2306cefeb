"""
Mix script loader for the console.

A mix script is a JSON document describing control gestures over time:

    {
      "mix_name": "Warmup",
      "actions": [
        {"action_id": "a1", "deck_id": "A", "command": "load_track",
         "parameters": {"filepath": "intro.wav"},
         "trigger": {"type": "script_start"}},
        {"action_id": "a2", "deck_id": "A", "command": "toggle_play",
         "trigger": {"type": "at_time", "seconds": 2.0}}
      ]
    }

`script_start` actions run immediately, in file order. `at_time` actions
are released by poll() once the engine clock has passed
script start + seconds. Every command goes through the same public deck
and bus setters the controls surface uses.
"""

import copy
import json
import logging
import os
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

TRIGGER_SCRIPT_START = 'script_start'
TRIGGER_AT_TIME = 'at_time'


class MixScriptError(ValueError):
    """Raised for a mix script that cannot be parsed or validated"""


class MixScriptLoader:
    """
    Loads a mix script and dispatches its actions against an AudioEngine.
    """

    def __init__(self, engine):
        """
        Args:
            engine: AudioEngine whose decks, bus and clock the actions drive
        """
        self.engine = engine
        self.loaded_mix: Optional[dict] = None
        self.script_start_time = 0.0
        self._pending: List[dict] = []
        self.executed_actions: List[str] = []
        self._commands: Dict[str, Callable[[Optional[str], dict], Any]] = {
            'load_track': self._cmd_load_track,
            'toggle_play': lambda deck_id, p: self._deck(deck_id).toggle_play(),
            'set_pitch': lambda deck_id, p: self._deck(deck_id).set_pitch(float(p['percent'])),
            'reset_pitch': lambda deck_id, p: self._deck(deck_id).reset_pitch(),
            'start_bend': lambda deck_id, p: self._deck(deck_id).start_bend(int(p['direction'])),
            'stop_bend': lambda deck_id, p: self._deck(deck_id).stop_bend(),
            'set_eq': lambda deck_id, p: self._deck(deck_id).set_eq(p['band'], float(p['level'])),
            'set_volume': lambda deck_id, p: self._deck(deck_id).set_volume(float(p['volume'])),
            'set_master_volume': lambda deck_id, p: self.engine.set_master_volume(float(p['volume'])),
            'start_scratch': lambda deck_id, p: self._deck(deck_id).start_scratch(float(p.get('angle', 0.0))),
            'scratch_move': self._cmd_scratch_move,
            'stop_scratch': lambda deck_id, p: self._deck(deck_id).stop_scratch(),
        }

    @property
    def supported_commands(self) -> List[str]:
        return sorted(self._commands.keys())

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def is_finished(self) -> bool:
        return self.loaded_mix is not None and not self._pending

    # ------------------------------------------------------------------ loading
    def load_mix_config(self, json_filepath: str) -> bool:
        """
        Load a mix script from a JSON file and run its script_start actions.

        Returns:
            True if the script was parsed and started
        """
        if not os.path.exists(json_filepath):
            logger.error(f"Mix config file not found: {json_filepath}")
            return False
        try:
            with open(json_filepath, 'r') as f:
                mix_config = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to read mix configuration from {json_filepath}: {e}")
            return False

        try:
            self.load_mix(mix_config)
        except MixScriptError as e:
            logger.error(f"Invalid mix configuration {json_filepath}: {e}")
            return False
        return True

    def load_mix(self, mix_config: dict):
        """Validate and start an already parsed mix script"""
        actions = self._validate(mix_config)
        self.loaded_mix = mix_config
        self.executed_actions = []
        self.script_start_time = self.engine.audio_clock.get_current_time()
        logger.info(f"Loading mix configuration: {mix_config.get('mix_name', 'Unknown')} ({len(actions)} actions)")

        immediate = [a for a in actions if a['trigger']['type'] == TRIGGER_SCRIPT_START]
        timed = [a for a in actions if a['trigger']['type'] == TRIGGER_AT_TIME]
        # Stable sort keeps file order for actions sharing a timestamp
        self._pending = sorted(timed, key=lambda a: float(a['trigger']['seconds']))
        logger.info(f"Found {len(immediate)} immediate actions and {len(timed)} timed actions")

        for action in immediate:
            self._execute(action)

    def _validate(self, mix_config) -> List[dict]:
        if not isinstance(mix_config, dict):
            raise MixScriptError("top level must be an object")
        actions = mix_config.get('actions', [])
        if not isinstance(actions, list):
            raise MixScriptError("'actions' must be a list")
        # Defaults are filled in on a copy; the caller's document stays as given
        actions = copy.deepcopy(actions)
        for index, action in enumerate(actions):
            if not isinstance(action, dict):
                raise MixScriptError(f"action #{index} is not an object")
            action.setdefault('action_id', f"action_{index}")
            action.setdefault('parameters', {})
            trigger = action.setdefault('trigger', {'type': TRIGGER_SCRIPT_START})
            trigger_type = trigger.get('type')
            if trigger_type == TRIGGER_AT_TIME:
                seconds = trigger.get('seconds')
                if not isinstance(seconds, (int, float)) or seconds < 0:
                    raise MixScriptError(f"action {action['action_id']}: at_time needs seconds >= 0")
            elif trigger_type != TRIGGER_SCRIPT_START:
                raise MixScriptError(f"action {action['action_id']}: unsupported trigger type {trigger_type!r}")
        return actions

    # ------------------------------------------------------------------ dispatch
    def poll(self) -> int:
        """Run every timed action that is due on the engine clock. Returns how many ran."""
        elapsed = self.engine.audio_clock.get_current_time() - self.script_start_time
        ran = 0
        while self._pending and float(self._pending[0]['trigger']['seconds']) <= elapsed + 1e-9:
            self._execute(self._pending.pop(0))
            ran += 1
        return ran

    def next_action_time(self) -> Optional[float]:
        """Script-relative time of the next timed action, None when nothing is pending"""
        if not self._pending:
            return None
        return float(self._pending[0]['trigger']['seconds'])

    def _execute(self, action: dict) -> bool:
        command = action.get('command')
        deck_id = action.get('deck_id')
        action_id = action.get('action_id')
        handler = self._commands.get(command)
        if handler is None:
            logger.warning(f"Unknown command '{command}' in action {action_id}. Skipping.")
            return False
        logger.debug(f"Executing action {action_id}: {command} on deck {deck_id} {action.get('parameters')}")
        try:
            handler(deck_id, action.get('parameters') or {})
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Action {action_id} ({command}) failed: {e}")
            return False
        self.executed_actions.append(action_id)
        return True

    def _deck(self, deck_id: Optional[str]):
        if not deck_id:
            raise ValueError("missing deck_id")
        return self.engine.deck(deck_id)

    def _resolve_track_path(self, filepath: str) -> str:
        if os.path.isabs(filepath) or os.path.exists(filepath):
            return filepath
        in_tracks_dir = os.path.join(self.engine.app_config.AUDIO_TRACKS_DIR, filepath)
        if os.path.exists(in_tracks_dir):
            return in_tracks_dir
        return filepath

    def _cmd_load_track(self, deck_id, parameters):
        filepath = parameters['filepath']
        deck = self._deck(deck_id)
        if deck.load_file(self._resolve_track_path(filepath)):
            logger.info(f"Loaded track on {deck_id}: {filepath}")
        else:
            logger.error(f"Failed to load track on {deck_id}: {filepath}")

    def _cmd_scratch_move(self, deck_id, parameters):
        deck = self._deck(deck_id)
        angles = parameters.get('angles')
        if angles is None:
            angles = [parameters['angle']]
        for angle in angles:
            deck.scratch_move(float(angle))

    def get_mix_info(self) -> Optional[Dict[str, Any]]:
        """Get information about the loaded mix"""
        if not self.loaded_mix:
            return None
        return {
            'mix_name': self.loaded_mix.get('mix_name'),
            'total_actions': len(self.loaded_mix.get('actions', [])),
            'executed_actions': len(self.executed_actions),
            'pending_actions': len(self._pending),
        }
