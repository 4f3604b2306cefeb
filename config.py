# dual-deck-console/config.py

import os
import logging
logger = logging.getLogger(__name__)

# --- Project Root Directory ---
# This assumes config.py is in the project's root directory
PROJECT_ROOT_DIR = os.path.dirname(os.path.abspath(__file__))

# --- Core Directory Names (relative to project root) ---
AUDIO_TRACKS_DIR_NAME = "audio_tracks"
MIX_CONFIGS_DIR_NAME = "mix_configs"

# --- Full Absolute Paths (derived from above) ---
AUDIO_TRACKS_DIR = os.path.join(PROJECT_ROOT_DIR, AUDIO_TRACKS_DIR_NAME)
MIX_CONFIGS_DIR = os.path.join(PROJECT_ROOT_DIR, MIX_CONFIGS_DIR_NAME)

# --- Output device / render timeline ---
SAMPLE_RATE = 44100
BLOCKSIZE = 2048  # Same blocksize the decks have always used - avoids startup artifacts
CHANNELS = 2
DECK_IDS = ("A", "B")

# --- Playback rate ---
# Effective rate = 1 + pitch/100 + bend * BEND_MAGNITUDE
BEND_MAGNITUDE = 0.05
PITCH_MIN_PERCENT = -100.0
PITCH_MAX_PERCENT = 100.0
# Pitch fader display ranges (+/- percent). Display scale only, never touches audio.
PITCH_RANGES = (8, 16, 50)

# --- Scratching ---
# Seconds of audio scrubbed per full 360 degree turn of the platter
SCRUB_SECONDS_PER_REVOLUTION = 1.5
# Power-law exponent applied to each angle delta (1.0 = linear)
SCRATCH_SENSITIVITY = 1.2
# Maximum speed (x normal) the scrub monitor will play a scratch at
SCRATCH_MAX_SPEED = 4.0
# Platter spin while playing at rate 1.0 (1.5 degrees per 60 Hz frame)
PLATTER_DEGREES_PER_SECOND = 90.0

# --- Three-band EQ ---
EQ_LOW_FREQ = 320.0
EQ_MID_FREQ = 1000.0
EQ_MID_Q = 0.7
EQ_HIGH_FREQ = 3200.0
# Level 0..100 maps to (level - 50) * EQ_DB_PER_STEP dB, i.e. -20..+20 dB
EQ_DB_PER_STEP = 0.4
EQ_LEVEL_DEFAULT = 50.0

# Global setting for EQ smoothing duration (in milliseconds).
# This controls how long old and new filter coefficients are crossfaded
# when an EQ band changes, preventing clicks/pops.
# Typical range: 5-20 ms.
EQ_SMOOTHING_MS = 10.0

# Ramp length for gain parameters (deck volume, master volume)
PARAM_SMOOTHING_MS = 5.0

# Fade applied when a voice starts or is torn down
VOICE_FADE_MS = 10.0

# --- Levels ---
DEFAULT_DECK_VOLUME = 80.0
DEFAULT_MASTER_VOLUME = 75.0

# --- Monitoring taps ---
ANALYSER_FFT_SIZE = 256
ANALYSER_SMOOTHING = 0.8
ANALYSER_MIN_DB = -100.0
ANALYSER_MAX_DB = -30.0
# How much audio the capture tap holds for a lagging recorder
CAPTURE_BUFFER_SECONDS = 5.0

# --- Track name markers shown by the controls surface ---
TRACK_LOADING_MARKER = "Loading..."
TRACK_FAILED_MARKER = "Failed to load track"

# --- Helper Function to Ensure Directory Existence ---
def ensure_dir_exists(dir_path):
    """Checks if a directory exists, and creates it if it doesn't."""
    if not os.path.exists(dir_path):
        try:
            os.makedirs(dir_path, exist_ok=True)
            logger.info(f"CONFIG: Created directory: {dir_path}")
        except OSError as e:
            logger.error(f"CONFIG - Could not create directory {dir_path}: {e}")

if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    logger.info(f"Project Root Directory: {PROJECT_ROOT_DIR}")
    logger.info(f"Audio Tracks Directory: {AUDIO_TRACKS_DIR}")
    logger.info(f"Mix Configs Directory: {MIX_CONFIGS_DIR}")
    logger.info(f"Render: {SAMPLE_RATE} Hz, blocksize {BLOCKSIZE}, decks {DECK_IDS}")

    logger.info("\nEnsuring directories exist (example calls):")
    ensure_dir_exists(AUDIO_TRACKS_DIR)
    ensure_dir_exists(MIX_CONFIGS_DIR)
