"""
Logging Setup — console + file handlers under LOG_DIR.
"""
import logging
import os

_FORMAT = "%(asctime)s - %(name)s - %(levelname)s: %(message)s"


def setup_logging(log_dir: str, debug: bool = False) -> logging.Logger:
    """Configure the `paygate` logger tree once. Safe to call repeatedly."""
    root = logging.getLogger("paygate")
    root.setLevel(logging.DEBUG if debug else logging.INFO)

    if root.handlers:
        return root

    formatter = logging.Formatter(_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)

    try:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.FileHandler(os.path.join(log_dir, "server.log"))
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
    except OSError as e:
        root.warning(f"File logging disabled ({log_dir}): {e}")

    return root
