import logging

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(threadName)s - %(message)s"


def setup_logger(level="INFO"):
    logger = logging.getLogger()
    logger.propagate = False

    # logger is singleton so clear handlers and set level to prevent duplicate logs
    logger.handlers.clear()
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT)
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    logger.addHandler(handler)

    # botocore is chatty at INFO about credential lookups
    logging.getLogger("botocore").setLevel(max(level, logging.WARNING))

    return logger
