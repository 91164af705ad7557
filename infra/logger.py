import logging

from infra.config import load_config


_loggers: dict[str, logging.Logger] = {}


def get_logger(name: str = "conciliador_fiscal") -> logging.Logger:
    """Logger con un único StreamHandler; nivel y formato salen de config.yaml."""
    if name in _loggers:
        return _loggers[name]

    cfg = load_config().logging
    nivel = logging.getLevelName(cfg.nivel.upper())

    logger = logging.getLogger(name)
    logger.setLevel(nivel)

    if not logger.handlers:
        ch = logging.StreamHandler()
        ch.setLevel(nivel)
        ch.setFormatter(logging.Formatter(cfg.formato))
        logger.addHandler(ch)

    _loggers[name] = logger
    return logger
