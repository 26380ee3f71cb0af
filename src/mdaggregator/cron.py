import logging
from typing import List
from typing import Optional

from mdaggregator.aggregator import get_aggregator
from mdaggregator.configure import Configuration

logger = logging.getLogger(__name__)


def run_cron(config: Configuration, tag: str, summary: Optional[List[str]] = None, **kwargs):
    """
    Update the caches of all aggregators that should be updated for this
    cron tag.

    :param config: The aggregators configuration
    :param tag: The cron tag
    :param summary: List to which errors are added
    :return: The summary
    """
    if summary is None:
        summary = []

    for _id in config.keys():
        _conf = config.conf[_id]
        if not isinstance(_conf, dict) or _conf.get("cron_tag") != tag:
            continue

        logger.debug(f"aggregator:{_id}: Updating cache for cron tag {tag!r}")
        try:
            get_aggregator(_id, config, **kwargs).update_cache()
        except Exception as err:
            logger.exception(f"aggregator:{_id}: Cache update failed")
            summary.append(f"Error during aggregator cache update: {err}")

    return summary
