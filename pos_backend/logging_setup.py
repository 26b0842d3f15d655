from __future__ import annotations

import logging

LOG_FORMAT = '%(asctime)s %(levelname)s %(name)s - %(message)s'


def configure_logging(settings) -> None:
    """Attach one formatted stream handler to the root and uvicorn loggers."""
    level = logging.getLevelName(str(settings.log_level).upper())
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.set_name('pos_backend')

    root = logging.getLogger()
    root.setLevel(level)
    # avoid duplicate handlers on reload
    if not any(h.get_name() == 'pos_backend' for h in root.handlers):
        root.addHandler(handler)

    for name in ('uvicorn', 'uvicorn.error', 'uvicorn.access'):
        logging.getLogger(name).setLevel(level)
