import argparse
import logging
import sys

from mdaggregator.aggregator import get_aggregator
from mdaggregator.configure import Configuration
from mdaggregator.cron import run_cron
from mdaggregator.exception import AggregatorError
from mdaggregator.metadata import pretty_print

logger = logging.getLogger(__name__)


def _parser(description, *args):
    parser = argparse.ArgumentParser(description=description)
    parser.add_argument('-v', "--verbose", action='store_true')
    parser.add_argument(dest="config_file")
    for arg in args:
        parser.add_argument(dest=arg)
    return parser


def _setup(args):
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format="%(asctime)s %(name)s:%(levelname)s %(message)s")
    return Configuration.create_from_config_file(args.config_file)


def get_main(argv=None):
    """
    Print the aggregated metadata.
    """
    args = _parser("Print aggregated metadata", "id").parse_args(argv)
    config = _setup(args)
    try:
        xml = get_aggregator(args.id, config).get_metadata()
    except AggregatorError as err:
        print(err, file=sys.stderr)
        return 1

    print(pretty_print(xml))
    return 0


def update_main(argv=None):
    """
    Refresh the cached metadata of one aggregator.
    """
    args = _parser("Update cached metadata", "id").parse_args(argv)
    config = _setup(args)
    try:
        get_aggregator(args.id, config).update_cache()
    except AggregatorError as err:
        print(err, file=sys.stderr)
        return 1
    return 0


def cron_main(argv=None):
    """
    Refresh the cached metadata of all aggregators with a given cron tag.
    """
    args = _parser("Run the aggregator cron job", "tag").parse_args(argv)
    config = _setup(args)
    summary = run_cron(config, args.tag)
    for line in summary:
        print(line)
    return 1 if summary else 0


if __name__ == '__main__':
    sys.exit(get_main())
