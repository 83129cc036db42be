# utils/logger.py
import logging
import sys


def init_logging(level: str = "DEBUG"):
    """Initializes console logging for the engine and quiets chatty libraries."""

    # --- ROOT LOGGER CONFIGURATION ---
    # Engine modules log under their module names (core.*, services.*).
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.DEBUG),
        format='%(asctime)s - %(name)-30s - %(levelname)-8s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        stream=sys.stderr,
        force=True,
    )

    # --- SILENCE NOISY LIBRARIES ---
    noisy_libraries = [
        "aiohttp",
        "asyncio",
        "urllib3",
    ]
    for lib_name in noisy_libraries:
        logging.getLogger(lib_name).setLevel(logging.WARNING)

    logging.getLogger(__name__).debug(f"Logging initialized at {str(level).upper()}.")
