import logging

ISO_FMT = "%Y-%m-%dT%H:%M:%S%z"

# Loggers whose INFO output drowns the builder's own events
_NOISY = ("httpx", "httpcore")


def configure_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s :: %(message)s",
        datefmt=ISO_FMT,
    )
    for name in _NOISY:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
