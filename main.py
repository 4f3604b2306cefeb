# dual-deck-console/main.py

import argparse
import time
import sys
import os
import logging

PROJECT_ROOT_DIR = os.path.dirname(os.path.abspath(__file__))
if PROJECT_ROOT_DIR not in sys.path:
    sys.path.insert(0, PROJECT_ROOT_DIR)

def setup_logging(log_level_str='INFO'):
    """Set up logging with specified level"""
    log_level = getattr(logging, log_level_str.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    # Suppress verbose logging from third-party libraries
    if log_level_str.upper() == 'DEBUG':
        # Keep numba at INFO level to avoid bytecode dumps
        logging.getLogger('numba').setLevel(logging.INFO)
        logging.getLogger('librosa').setLevel(logging.WARNING)

    return logging.getLogger(__name__)


def resolve_path(path, search_dir):
    """Absolute paths and existing relative paths win, then search_dir, then the project root"""
    if os.path.isabs(path) or os.path.exists(path):
        return path
    for base in (search_dir, PROJECT_ROOT_DIR):
        candidate = os.path.join(base, path)
        if os.path.exists(candidate):
            return candidate
    return path


def build_parser():
    parser = argparse.ArgumentParser(description="Dual Deck Console - two-deck mixing engine")
    parser.add_argument("--deck-a", type=str, default=None,
                        help="Audio file to load on deck A (absolute, or relative to audio_tracks/)")
    parser.add_argument("--deck-b", type=str, default=None,
                        help="Audio file to load on deck B (absolute, or relative to audio_tracks/)")
    parser.add_argument("--script", type=str, default=None,
                        help="JSON mix script (absolute, or relative to mix_configs/)")
    parser.add_argument("--play", action='store_true',
                        help="Start every loaded deck immediately")
    parser.add_argument("--duration", type=float, default=0.0,
                        help="Stop after this many seconds (default: run until decks and script are done)")
    parser.add_argument("--log-level",
                       choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                       default='INFO',
                       help='Set logging level (default: INFO)')
    parser.add_argument("--verbose", "-v", action='store_true',
                       help='Enable verbose debug logging (same as --log-level DEBUG)')
    parser.add_argument("--quiet", "-q", action='store_true',
                       help='Only show errors and warnings (same as --log-level WARNING)')
    return parser


def run_console(argv=None):
    args = build_parser().parse_args(argv)

    # Determine log level based on arguments
    if args.quiet:
        log_level = 'WARNING'
    elif args.verbose:
        log_level = 'DEBUG'
    else:
        log_level = args.log_level

    logger = setup_logging(log_level)
    logger.info(f"Dual Deck Console starting with log level: {log_level}")

    import config as app_config
    from console_engine.engine import AudioEngine
    from console_engine.mix_loader import MixScriptLoader

    app_config.ensure_dir_exists(app_config.AUDIO_TRACKS_DIR)
    app_config.ensure_dir_exists(app_config.MIX_CONFIGS_DIR)

    try:
        audio_engine = AudioEngine(app_config_module=app_config)
    except Exception as e_engine_init:
        logger.error(f"Failed to initialize AudioEngine: {e_engine_init}")
        return 1

    def log_transition(deck_id):
        def _observer(old_state, new_state, state):
            logger.info(f"Deck {deck_id} - {old_state.name} -> {new_state.name} at {state.paused_at_seconds:.2f}s")
        return _observer

    for deck_id, deck in audio_engine.decks.items():
        deck.state_machine.add_observer(log_transition(deck_id))

    exit_code = 0
    loader = None
    try:
        for deck_id, track_arg in (('A', args.deck_a), ('B', args.deck_b)):
            if not track_arg:
                continue
            track_path = resolve_path(track_arg, app_config.AUDIO_TRACKS_DIR)
            if not audio_engine.deck(deck_id).load_file(track_path):
                logger.error(f"Deck {deck_id} - Could not load '{track_arg}'")
                exit_code = 1

        audio_engine.start()

        if args.script:
            loader = MixScriptLoader(audio_engine)
            if not loader.load_mix_config(resolve_path(args.script, app_config.MIX_CONFIGS_DIR)):
                logger.error(f"Failed to load script '{args.script}'.")
                return 1

        if args.play:
            for deck in audio_engine.decks.values():
                if deck.track is not None:
                    deck.play()

        logger.info("Monitoring. Press Ctrl+C to exit early.")
        wait_start_time = time.time()
        loop_count = 0
        while True:
            loop_count += 1
            if loader is not None:
                loader.poll()

            script_pending = loader is not None and not loader.is_finished
            decks_playing = audio_engine.any_deck_playing()

            if loop_count % 40 == 0:
                clock_time = audio_engine.audio_clock.get_current_time()
                logger.info(f"Status: clock={clock_time:.1f}s | decks={audio_engine.status()}")

            elapsed = time.time() - wait_start_time
            if args.duration > 0:
                if elapsed >= args.duration:
                    logger.info(f"Duration of {args.duration}s reached.")
                    break
            elif not script_pending and not decks_playing:
                logger.info("Nothing left to play.")
                break

            time.sleep(0.05)
        logger.info("Monitoring loop finished.")

    except KeyboardInterrupt:
        logger.info("KeyboardInterrupt received. Shutting down gracefully...")
    except Exception as e:
        logger.error(f"An unexpected error occurred: {e}")
        exit_code = 1
    finally:
        logger.info("Initiating shutdown of audio engine and decks...")
        audio_engine.shutdown()
        logger.info("Dual Deck Console finished.")
    return exit_code

if __name__ == "__main__":
    sys.exit(run_console())
