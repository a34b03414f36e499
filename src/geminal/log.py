import logging

LOG_FORMAT = '%(asctime)s:%(name)s:%(levelname)s:%(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def setup_logging(
        log_file: str | None = 'geminal.log',
        level: int = logging.INFO,
) -> None:
    """Send geminal logs to a file and to stderr.

    Call once at application startup. Library modules only ever use
    ``logging.getLogger(__name__)``.
    """
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.insert(0, logging.FileHandler(log_file))
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
        handlers=handlers,
    )
