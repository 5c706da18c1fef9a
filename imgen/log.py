import sys

from loguru import logger

from . import spinner

# -q/-v offsets from the default WARNING level
LEVELS = ["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG", "TRACE"]
DEFAULT_LEVEL = LEVELS.index("WARNING")

FORMAT = "<level>{level: <8}</level> | {message}"
DEBUG_FORMAT = "<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan> - {message}"


def level_for(verbose: int = 0, quiet: int = 0) -> str:
    index = DEFAULT_LEVEL + verbose - quiet
    index = max(0, min(index, len(LEVELS) - 1))
    return LEVELS[index]


def _sink(message):
    spinner.write(str(message))


def setup_logging(verbose: int = 0, quiet: int = 0) -> str:
    """Replace loguru's default handler with one that plays nicely with the spinner."""
    level = level_for(verbose, quiet)
    logger.remove()
    logger.add(
        _sink,
        level=level,
        format=DEBUG_FORMAT if LEVELS.index(level) >= LEVELS.index("DEBUG") else FORMAT,
        colorize=sys.stderr.isatty(),
    )
    return level
