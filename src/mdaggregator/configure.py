import os
from typing import Dict
from typing import List
from typing import Optional

from idpyoidc.util import load_config_file

from mdaggregator.defaults import DEFAULT_CERT_DIR
from mdaggregator.defaults import DEFAULT_HTTPC_PARAMS
from mdaggregator.defaults import DEFAULT_SIGN_ALGORITHM
from mdaggregator.defaults import DEFAULT_VALID_LENGTH
from mdaggregator.exception import ConfigurationError


def resolve_path(path: Optional[str], base: str = "") -> Optional[str]:
    if not path:
        return path
    if os.path.isabs(path) or not base:
        return path
    return os.path.join(base, path)


def arrayize(value) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return list(value)


class SourceConfiguration(object):
    def __init__(self, conf: Dict, cert_dir: str = "", ssl_cafile: Optional[str] = None):
        if not isinstance(conf, dict) or not conf.get("url"):
            raise ConfigurationError(f"Metadata source without url: {conf!r}")

        self.conf = conf
        self.url = conf["url"]
        _cafile = conf.get("ssl_cafile")
        if _cafile:
            self.ssl_cafile = resolve_path(_cafile, cert_dir)
        else:
            self.ssl_cafile = ssl_cafile
        self.cert = resolve_path(conf.get("cert"), cert_dir)


class AggregatorConfiguration(object):
    """ Configuration of one aggregator """

    def __init__(self, conf: Dict, base_path: str = ""):
        if not isinstance(conf, dict):
            raise ConfigurationError(f"Aggregator configuration must be a dictionary: {conf!r}")

        self.conf = conf
        self.name = conf.get("name")
        self.cron_tag = conf.get("cron_tag")

        self.cache_directory = resolve_path(conf.get("cache_directory"), base_path)
        self.cache = conf.get("cache")
        self.cache_generated = conf.get("cache_generated")
        if self.cache_generated is not None:
            self.cache_generated = int(self.cache_generated)

        self.exclude = arrayize(conf.get("exclude"))
        self.filter = arrayize(conf.get("filter"))
        self.valid_length = int(conf.get("valid_length", DEFAULT_VALID_LENGTH))

        self.cert_dir = resolve_path(conf.get("cert_dir", DEFAULT_CERT_DIR), base_path)
        self.sign_privatekey = resolve_path(conf.get("sign_privatekey"), self.cert_dir)
        self.sign_privatekey_pass = conf.get("sign_privatekey_pass")
        self.sign_certificate = resolve_path(conf.get("sign_certificate"), self.cert_dir)
        self.sign_algorithm = conf.get("sign_algorithm", DEFAULT_SIGN_ALGORITHM)

        self.ssl_cafile = resolve_path(conf.get("ssl_cafile"), self.cert_dir)
        self.httpc_params = DEFAULT_HTTPC_PARAMS.copy()
        self.httpc_params.update(conf.get("httpc_params", {}))

        self.registration_info = conf.get("registration_info", {})
        self.publication_info = conf.get("publication_info", {})

        self.sources = [
            SourceConfiguration(s, cert_dir=self.cert_dir, ssl_cafile=self.ssl_cafile)
            for s in conf.get("sources", [])
        ]


class Configuration(object):
    """
    The configuration of all aggregators, keyed by aggregator id.
    """

    def __init__(self, conf: Dict, base_path: str = ""):
        self.conf = conf or {}
        self.base_path = base_path

    @classmethod
    def create_from_config_file(cls, filename: str):
        _base_path = os.path.dirname(os.path.abspath(filename))
        return cls(load_config_file(filename), base_path=_base_path)

    def keys(self):
        return self.conf.keys()

    def __contains__(self, item):
        return item in self.conf

    def __getitem__(self, item) -> AggregatorConfiguration:
        return AggregatorConfiguration(self.conf[item], base_path=self.base_path)
