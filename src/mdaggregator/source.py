import enum
import hashlib
import json
import logging
from typing import Optional
from urllib.parse import urlparse
from urllib.request import url2pathname

import requests
from cryptojwt.jwt import utc_time_sans_frac
from lxml import etree

from mdaggregator.configure import SourceConfiguration
from mdaggregator.defaults import SOURCE_CACHE_LIFETIME
from mdaggregator.exception import MetadataError
from mdaggregator.exception import SignatureFailure
from mdaggregator.metadata import Metadata
from mdaggregator.metadata import from_element
from mdaggregator.metadata import metadata_root
from mdaggregator.metadata import parse_document
from mdaggregator.metadata import parse_metadata
from mdaggregator.metadata import serialize
from mdaggregator.signing import verify_signature

logger = logging.getLogger(__name__)


class FetchState(enum.Enum):
    NOT_ATTEMPTED = "not attempted"
    FETCHED = "fetched"
    FAILED = "failed"


def config_hash(conf) -> str:
    return hashlib.sha1(json.dumps(conf, sort_keys=True, default=str).encode("utf-8")).hexdigest()


class EntitySource(object):
    """
    Loads metadata from one URL or file, keeping a cached copy that is used
    when the source can not be reached.
    """

    def __init__(self, aggregator, config: SourceConfiguration, http_cli=None,
                 httpc_params: Optional[dict] = None):
        self.aggregator = aggregator
        self.log_loc = f"aggregator:{aggregator.id}: "

        self.url = config.url
        self.ssl_cafile = config.ssl_cafile
        self.certificate = config.cert

        self.http_cli = http_cli or requests.request
        self.httpc_params = dict(httpc_params or {})
        if self.ssl_cafile:
            self.httpc_params["verify"] = self.ssl_cafile

        self.cache_id = hashlib.sha1(self.url.encode("utf-8")).hexdigest()
        self.cache_tag = config_hash(config.conf)

        self.metadata = None
        self.state = FetchState.NOT_ATTEMPTED

    def _local_file(self) -> Optional[str]:
        _part = urlparse(self.url)
        if _part.scheme == "file":
            return url2pathname(_part.path)
        elif _part.scheme in ("http", "https"):
            return None
        return self.url

    def _fetch(self) -> Optional[bytes]:
        _file = self._local_file()
        if _file:
            try:
                with open(_file, "rb") as fp:
                    return fp.read()
            except OSError as err:
                logger.error(f"{self.log_loc}Unable to load metadata from {self.url!r}: {err}")
                return None

        if self.ssl_cafile:
            logger.debug(f"{self.log_loc}Validating https connection against CA certificate(s) "
                         f"found in {self.ssl_cafile!r}")
        try:
            response = self.http_cli("GET", self.url, **self.httpc_params)
        except requests.exceptions.RequestException as err:
            logger.error(f"{self.log_loc}Unable to load metadata from {self.url!r}: {err}")
            return None

        if response.status_code != 200:
            logger.error(f"{self.log_loc}Unable to load metadata from {self.url!r}: "
                         f"status code {response.status_code}")
            return None

        return response.content

    def download_metadata(self) -> Optional[Metadata]:
        """
        Retrieve and parse the metadata.

        :return: An Entity or Container or None if the metadata could not be
            downloaded, parsed or verified.
        """
        logger.debug(f"{self.log_loc}Downloading metadata from {self.url!r}")

        _data = self._fetch()
        if _data is None:
            return None

        try:
            _doc = parse_document(_data)
        except etree.XMLSyntaxError as err:
            logger.error(f"{self.log_loc}Error parsing XML from {self.url!r}: {err}")
            return None

        try:
            _root = metadata_root(_doc)
            _md = from_element(_root)
        except MetadataError as err:
            logger.error(f"{self.log_loc}Unable to parse metadata from {self.url!r}: {err}")
            return None

        if self.certificate:
            try:
                verify_signature(_root, self.certificate)
            except SignatureFailure as err:
                logger.error(f"{self.log_loc}Unable to verify signature on metadata from "
                             f"{self.url!r}: {err}")
                return None
            logger.debug(f"{self.log_loc}Validated signature on metadata from {self.url!r}")

        return _md

    def update_cache(self):
        """
        Attempt to update the cache. Only the first call on an instance does
        anything.
        """
        if self.state != FetchState.NOT_ATTEMPTED:
            return

        _md = self.download_metadata()
        if _md is None:
            self.state = FetchState.FAILED
            return

        self.state = FetchState.FETCHED
        self.metadata = _md

        _expires = utc_time_sans_frac() + SOURCE_CACHE_LIFETIME
        if _md.valid_until is not None and _md.valid_until < _expires:
            _expires = _md.valid_until

        self.aggregator.cache.put(self.cache_id, serialize(_md), _expires, self.cache_tag)

    def get_metadata(self) -> Optional[Metadata]:
        """
        Return the metadata, from the source if the cached copy is outdated
        and the source can be reached, otherwise from the cache.
        """
        if self.metadata is not None:
            return self.metadata

        if not self.aggregator.cache.is_valid(self.cache_id, self.cache_tag):
            self.update_cache()
            if self.metadata is not None:
                return self.metadata
            # Unable to update the cache, fall back on whatever is cached

        _data = self.aggregator.cache.load(self.cache_id)
        if _data is None:
            logger.error(f"{self.log_loc}No cached metadata available for {self.url!r}.")
            return None

        logger.debug(f"{self.log_loc}Using cached metadata for {self.url!r}")
        try:
            self.metadata = parse_metadata(_data)
        except (etree.XMLSyntaxError, MetadataError) as err:
            logger.error(f"{self.log_loc}Unable to parse cached metadata for {self.url!r}: {err}")
            return None
        return self.metadata
