import hashlib
import json
import logging
from typing import List
from typing import Optional

from cryptojwt.jwt import utc_time_sans_frac
from cryptojwt.utils import importer

from mdaggregator.cache import CacheStore
from mdaggregator.cache import FileCache
from mdaggregator.configure import AggregatorConfiguration
from mdaggregator.configure import Configuration
from mdaggregator.defaults import FILTER_PROTOCOLS
from mdaggregator.defaults import FILTER_ROLES
from mdaggregator.defaults import RSA_DIGESTS
from mdaggregator.exception import ConfigurationError
from mdaggregator.exception import UnknownAggregator
from mdaggregator.metadata import Container
from mdaggregator.metadata import Entity
from mdaggregator.metadata import extract_entities
from mdaggregator.metadata import publication_info
from mdaggregator.metadata import registration_info
from mdaggregator.metadata import to_string
from mdaggregator.signing import Signer
from mdaggregator.source import EntitySource
from mdaggregator.source import config_hash

logger = logging.getLogger(__name__)


def init_cache(config: AggregatorConfiguration) -> CacheStore:
    """
    Instantiate the cache store. Unless something else is specified in the
    'cache' configuration, files in the cache directory are used.
    """
    if config.cache:
        _cls = config.cache["class"]
        if isinstance(_cls, str):
            _cls = importer(_cls)
        return _cls(**config.cache.get("kwargs", {}))
    return FileCache(config.cache_directory)


class Aggregator(object):
    """
    Builds one metadata aggregate out of a number of metadata sources.
    """

    def __init__(self,
                 id: str,
                 config: AggregatorConfiguration,
                 cache: Optional[CacheStore] = None,
                 http_cli=None):
        self.id = id
        self.log_loc = f"aggregator:{id}: "
        self.name = config.name
        self.cron_tag = config.cron_tag

        self.cache = cache if cache is not None else init_cache(config)
        self.cache_generated = config.cache_generated
        # A change in the configuration invalidates everything cached before it
        self.cache_tag = config_hash(config.conf)

        self.excluded = []
        self.protocols = {}
        self.roles = {}
        self.exclude_entities(config.exclude)
        self.set_filters(config.filter)

        self.valid_length = config.valid_length

        if config.sign_algorithm not in RSA_DIGESTS:
            raise ConfigurationError(f"Unsupported signature algorithm {config.sign_algorithm!r}")

        self.signer = None
        if config.sign_privatekey:
            self.signer = Signer(config.sign_privatekey,
                                 certificate=config.sign_certificate,
                                 algorithm=config.sign_algorithm,
                                 passphrase=config.sign_privatekey_pass)

        self.ssl_cafile = config.ssl_cafile

        self.extensions = []
        if config.registration_info:
            self.extensions.append(registration_info(config.registration_info))
        if config.publication_info:
            self.extensions.append(publication_info(config.publication_info))

        self.sources = [
            EntitySource(self, source, http_cli=http_cli, httpc_params=config.httpc_params)
            for source in config.sources
        ]

    @property
    def cache_id(self) -> str:
        """
        Identifies the generated aggregate. Derived from the current exclusion
        and filter settings, so it does not matter in which order they were set.
        """
        _state = {
            "id": self.id,
            "exclude": self.excluded,
            "protocols": self.protocols,
            "roles": self.roles
        }
        return hashlib.sha1(json.dumps(_state, sort_keys=True).encode("utf-8")).hexdigest()

    def exclude_entities(self, entities: List[str]):
        """
        Exclude a set of entities from the aggregate.

        :param entities: The entity IDs of the entities to exclude. An empty
            list keeps what is already configured.
        """
        if not entities:
            return
        self.excluded = sorted(set(entities))

    def set_filters(self, tokens: List[str]):
        """
        Set the role and protocol filters according to one or more of:

        - 'saml2': all SAML 2.0 capable entities
        - 'saml20-idp': all SAML 2.0 capable identity providers
        - 'saml20-sp': all SAML 2.0 capable service providers
        - 'saml20-aa': all SAML 2.0 capable attribute authorities

        An empty list keeps what is already configured.
        """
        if not tokens:
            return

        _tokens = set(tokens)
        self.protocols = {proto: bool(_tokens.intersection(opts))
                          for proto, opts in FILTER_PROTOCOLS.items()}
        self.roles = {role: bool(_tokens.intersection(opts))
                      for role, opts in FILTER_ROLES.items()}

    def get_entities_descriptor(self) -> Container:
        """
        Collect the entities from all sources into one flat container.
        """
        _children = []
        for source in self.sources:
            _md = source.get_metadata()
            if _md is None:
                continue

            if isinstance(_md, Entity):
                _children.append(_md.unsigned())
            else:
                _children.extend(e.unsigned() for e in extract_entities(_md))

        _unique = []
        _seen = set()
        for entity in _children:
            _c14n = entity.canonical()
            if _c14n not in _seen:
                _seen.add(_c14n)
                _unique.append(entity)

        return Container(_unique,
                         name=self.name,
                         valid_until=utc_time_sans_frac() + self.valid_length,
                         extensions=self.extensions)

    def exclude(self, container: Container) -> Container:
        """
        Recursively remove the excluded entities.
        """
        if not self.excluded:
            return container

        _filtered = []
        for child in container.children:
            if isinstance(child, Entity):
                if child.entity_id in self.excluded:
                    continue
                _filtered.append(child)
            else:
                _filtered.append(self.exclude(child))

        return container.replace(_filtered)

    def _wanted(self, entity: Entity) -> bool:
        _roles = [r for r, enabled in self.roles.items() if enabled]
        _protocols = [p for p, enabled in self.protocols.items() if enabled]
        for role in entity.roles:
            if role.kind in _roles and set(_protocols).intersection(role.protocols):
                return True
        return False

    def filter(self, container: Container) -> Container:
        """
        Recursively keep only the entities that has a role that is enabled and
        that supports at least one of the enabled protocols.
        """
        if not self.roles or not self.protocols:
            return container

        _filtered = []
        for child in container.children:
            if isinstance(child, Entity):
                if self._wanted(child):
                    _filtered.append(child)
            else:
                _filtered.append(self.filter(child))

        return container.replace(_filtered)

    def add_signature(self, element):
        if self.signer is None:
            return element
        return self.signer.sign(element)

    def update_cached_metadata(self) -> str:
        """
        Build the complete, signed metadata and store it in the cache if
        generated metadata should be cached.

        :return: The metadata as text
        """
        _container = self.get_entities_descriptor()
        _container = self.exclude(_container)
        _container = self.filter(_container)
        _element = _container.to_element()
        self.add_signature(_element)
        _xml = to_string(_element)

        if self.cache_generated is not None:
            logger.debug(f"{self.log_loc}Saving generated metadata to cache.")
            self.cache.put(self.cache_id, _xml, utc_time_sans_frac() + self.cache_generated,
                           self.cache_tag)

        return _xml

    def get_metadata(self) -> str:
        if self.cache_generated is not None:
            _xml = self.cache.get(self.cache_id, self.cache_tag)
            if _xml is not None:
                logger.debug(f"{self.log_loc}Loaded generated metadata from cache.")
                return _xml.decode("utf-8")

        return self.update_cached_metadata()

    def update_cache(self):
        """
        Refresh every source and the generated metadata.
        """
        for source in self.sources:
            source.update_cache()

        self.update_cached_metadata()


def get_aggregator(id: str, config: Configuration, **kwargs) -> Aggregator:
    """
    Return the aggregator with the given id.

    :param id: The id of the aggregator
    :param config: A Configuration instance
    :raises UnknownAggregator: if there is no aggregator with that id
    """
    if id not in config:
        raise UnknownAggregator(f"No aggregator with id {id!r}")
    return Aggregator(id, config[id], **kwargs)
