import logging

import store_config as cfg
from store_server import app


if __name__ == '__main__':
    logging.basicConfig(level=getattr(logging, cfg.LOG_LEVEL, logging.INFO),
                        format="%(asctime)s %(levelname)s %(name)s %(message)s")
    app.run(host=cfg.HOST, port=cfg.PORT, debug=cfg.FLASK_DEBUG)
