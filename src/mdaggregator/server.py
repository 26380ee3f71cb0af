#!/usr/bin/env python3
import logging
import sys

from flask import Flask

from mdaggregator.configure import Configuration
from mdaggregator.views import aggregator_views

NAME = 'mdaggregator'


def init_logging(logfile_name=None, level=logging.DEBUG):
    _logger = logging.getLogger("")
    hdlr = logging.FileHandler(logfile_name or '{}.log'.format(NAME))
    base_formatter = logging.Formatter("%(asctime)s %(name)s:%(levelname)s %(message)s")
    hdlr.setFormatter(base_formatter)
    _logger.addHandler(hdlr)
    _logger.setLevel(level)
    return _logger


def init_app(config_file, name=None, **kwargs):
    name = name or __name__
    app = Flask(name, **kwargs)

    app.aggregator_config = Configuration.create_from_config_file(config_file)
    app.register_blueprint(aggregator_views)

    return app


if __name__ == "__main__":
    init_logging()
    app = init_app(sys.argv[1], NAME)
    app.run(host='127.0.0.1', port=int(sys.argv[2]) if len(sys.argv) > 2 else 5000)
