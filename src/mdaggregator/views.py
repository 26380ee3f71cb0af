import logging

from flask import Blueprint
from flask import current_app
from flask import jsonify
from flask import make_response
from flask import request

from mdaggregator.aggregator import get_aggregator
from mdaggregator.defaults import ALLOWED_MIME_TYPES
from mdaggregator.defaults import DEFAULT_MIME_TYPE
from mdaggregator.exception import BadRequest
from mdaggregator.exception import UnknownAggregator
from mdaggregator.metadata import pretty_print

logger = logging.getLogger(__name__)

aggregator_views = Blueprint("aggregator", __name__, url_prefix='')


def _split(arg):
    _val = request.args.get(arg)
    if _val is None:
        return []
    return [v for v in _val.split(",") if v]


@aggregator_views.route("/")
def index():
    return jsonify(sorted(current_app.aggregator_config.keys()))


@aggregator_views.route("/get")
def get():
    _id = request.args.get("id")
    if _id is None:
        raise BadRequest('Missing required parameter "id".')

    aggregator = get_aggregator(_id, current_app.aggregator_config)
    aggregator.set_filters(_split("set"))
    aggregator.exclude_entities(_split("exclude"))
    xml = aggregator.get_metadata()

    mime_type = request.args.get("mimetype")
    if mime_type in ALLOWED_MIME_TYPES:
        if mime_type == 'text/plain':
            xml = pretty_print(xml)
    else:
        mime_type = DEFAULT_MIME_TYPE

    response = make_response(xml)
    response.headers['Content-Type'] = mime_type
    response.headers['Content-Disposition'] = f'filename={_id}.xml'
    return response


@aggregator_views.errorhandler(BadRequest)
def bad_request(err):
    logger.info(f"Bad request: {err}")
    return make_response(str(err), 400, {'Content-Type': 'text/plain'})


@aggregator_views.errorhandler(UnknownAggregator)
def not_found(err):
    logger.info(f"Not found: {err}")
    return make_response(str(err), 404, {'Content-Type': 'text/plain'})
