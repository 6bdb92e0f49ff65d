import logging
import sys
import os
from meal_relay.config import settings

# Custom formatter with colors for console output
class ColoredFormatter(logging.Formatter):
    """Custom formatter with colors for different log levels and component tags."""

    # ANSI color codes
    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
        'RESET': '\033[0m',
    }

    # Component colors for easier visual parsing
    COMPONENT_COLORS = {
        '[API]': '\033[94m',      # Light blue
        '[RELAY]': '\033[95m',    # Light magenta
        '[WEBHOOK]': '\033[96m',  # Light cyan
        '[STREAM]': '\033[35m',   # Magenta
        '[EVENTS]': '\033[93m',   # Light yellow
    }

    def format(self, record):
        level_color = self.COLORS.get(record.levelname, '')
        reset = self.COLORS['RESET']

        formatted = super().format(record)

        for component, color in self.COMPONENT_COLORS.items():
            if component in formatted:
                formatted = formatted.replace(component, f'{color}{component}{reset}')

        # Make upstream failures stand out
        if 'WEBHOOK FAILED' in formatted:
            formatted = formatted.replace('WEBHOOK FAILED', '\033[41mWEBHOOK FAILED\033[0m')  # Red background
        elif 'CLIENT GONE' in formatted:
            formatted = formatted.replace('CLIENT GONE', '\033[43mCLIENT GONE\033[0m')  # Yellow background

        formatted = formatted.replace(
            f'[{record.levelname}]',
            f'{level_color}[{record.levelname}]{reset}'
        )

        return formatted


def setup_logging():
    """
    Configures the logging system with both file and console output.
    Console output has colors, file output is plain text.
    """
    log_format = "[%(asctime)s] [%(levelname)s] %(message)s"
    date_format = "%Y-%m-%d %H:%M:%S"

    # Ensure log directory exists
    log_dir = os.path.dirname(settings.log_file)
    if log_dir and not os.path.exists(log_dir):
        os.makedirs(log_dir, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(settings.log_level.upper())

    # Clear any existing handlers
    root_logger.handlers.clear()

    # File handler (plain text)
    file_handler = logging.FileHandler(settings.log_file)
    file_handler.setFormatter(logging.Formatter(log_format, datefmt=date_format))
    root_logger.addHandler(file_handler)

    # Console handler (with colors)
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(ColoredFormatter(log_format, datefmt=date_format))
    root_logger.addHandler(console_handler)

    # Set lower level for some noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("python_multipart").setLevel(logging.WARNING)
    logging.getLogger("multipart").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Returns a logger instance with the given name.
    """
    return logging.getLogger(name)

# Initialize logging on import
setup_logging()
