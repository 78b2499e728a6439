import logging


def get_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(f"savings_ai.{name}")
    if not logger.handlers:
        handler = logging.StreamHandler()
        fmt = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        handler.setFormatter(fmt)
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
    return logger


"""
Logging setup and it configures:
- Log format
- Log level
- Output destination

The main purpose:
One logger per module under the savings_ai namespace.
"""
