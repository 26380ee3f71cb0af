import logging

import pytest
import requests
import responses
from cryptojwt.jwt import utc_time_sans_frac

from mdaggregator.aggregator import Aggregator
from mdaggregator.cache import MemoryCache
from mdaggregator.configure import AggregatorConfiguration
from mdaggregator.metadata import Container
from mdaggregator.metadata import Entity
from mdaggregator.metadata import entity_ids
from mdaggregator.metadata import parse_metadata
from mdaggregator.metadata import serialize
from mdaggregator.metadata import to_string
from mdaggregator.signing import Signer
from mdaggregator.source import FetchState
from tests.utils import full_path
from tests.utils import make_key_and_cert
from tests.utils import read_metadata

MD_URL = "https://md.example.org/metadata.xml"


def _source(source_conf, cache=None, **kwargs):
    _conf = AggregatorConfiguration({"sources": [source_conf]}, **kwargs)
    aggregator = Aggregator("example", _conf, cache=MemoryCache() if cache is None else cache)
    return aggregator.sources[0]


class TestDownload(object):
    def test_entity(self):
        source = _source({"url": MD_URL})
        with responses.RequestsMock() as rsps:
            rsps.add(rsps.GET, MD_URL, body=read_metadata("example.xml"))
            md = source.download_metadata()

        assert isinstance(md, Entity)
        assert md.entity_id == "urn:x"

    def test_container(self):
        source = _source({"url": MD_URL})
        with responses.RequestsMock() as rsps:
            rsps.add(rsps.GET, MD_URL, body=read_metadata("federation.xml"))
            md = source.download_metadata()

        assert isinstance(md, Container)
        assert "https://aa.example.org" in entity_ids(md)

    def test_local_file(self):
        source = _source({"url": full_path("example.xml")})
        md = source.download_metadata()
        assert md.entity_id == "urn:x"

    def test_file_url(self):
        source = _source({"url": f"file://{full_path('example.xml')}"})
        md = source.download_metadata()
        assert md.entity_id == "urn:x"

    def test_missing_local_file(self, caplog):
        source = _source({"url": full_path("nonexistent.xml")})
        assert source.download_metadata() is None
        assert "Unable to load metadata" in caplog.text

    def test_http_error(self, caplog):
        source = _source({"url": MD_URL})
        with responses.RequestsMock() as rsps:
            rsps.add(rsps.GET, MD_URL, status=500)
            assert source.download_metadata() is None
        assert "status code 500" in caplog.text

    def test_connection_error(self):
        source = _source({"url": MD_URL})
        with responses.RequestsMock() as rsps:
            rsps.add(rsps.GET, MD_URL, body=requests.exceptions.ConnectionError("refused"))
            assert source.download_metadata() is None

    def test_timeout(self):
        source = _source({"url": MD_URL})
        with responses.RequestsMock() as rsps:
            rsps.add(rsps.GET, MD_URL, body=requests.exceptions.ReadTimeout("too slow"))
            assert source.download_metadata() is None

    def test_not_xml(self, caplog):
        source = _source({"url": MD_URL})
        with responses.RequestsMock() as rsps:
            rsps.add(rsps.GET, MD_URL, body="this is not <xml")
            assert source.download_metadata() is None
        assert "Error parsing XML" in caplog.text

    def test_wrong_root(self, caplog):
        source = _source({"url": MD_URL})
        with responses.RequestsMock() as rsps:
            rsps.add(rsps.GET, MD_URL, body=read_metadata("not_metadata.xml"))
            assert source.download_metadata() is None
        assert "No <EntityDescriptor> or <EntitiesDescriptor>" in caplog.text

    def test_http_parameters(self):
        calls = []

        def http_cli(method, url, **kwargs):
            calls.append((method, url, kwargs))
            raise requests.exceptions.ConnectTimeout("timeout")

        _conf = AggregatorConfiguration({
            "sources": [{"url": MD_URL, "ssl_cafile": "/etc/ssl/ca.pem"}],
            "httpc_params": {"timeout": 5}
        })
        aggregator = Aggregator("example", _conf, cache=MemoryCache(), http_cli=http_cli)
        assert aggregator.sources[0].download_metadata() is None
        assert calls == [("GET", MD_URL, {"timeout": 5, "verify": "/etc/ssl/ca.pem"})]

    def test_inherited_ca_file(self):
        _conf = AggregatorConfiguration({
            "sources": [{"url": MD_URL}, {"url": MD_URL, "ssl_cafile": "/own/ca.pem"}],
            "ssl_cafile": "/etc/ssl/ca.pem"
        })
        aggregator = Aggregator("example", _conf, cache=MemoryCache())
        assert aggregator.sources[0].httpc_params["verify"] == "/etc/ssl/ca.pem"
        assert aggregator.sources[1].httpc_params["verify"] == "/own/ca.pem"
        assert aggregator.sources[0].httpc_params["timeout"] == 30


class TestSignedSource(object):
    @pytest.fixture(autouse=True)
    def create_keys(self, tmp_path):
        self.key_file, self.cert_file = make_key_and_cert(tmp_path)
        _signer = Signer(self.key_file, certificate=self.cert_file)
        _elem = parse_metadata(read_metadata("federation.xml")).to_element()
        self.signed = to_string(_signer.sign(_elem))

    def test_verified(self):
        source = _source({"url": MD_URL, "cert": self.cert_file})
        with responses.RequestsMock() as rsps:
            rsps.add(rsps.GET, MD_URL, body=self.signed)
            md = source.download_metadata()
        assert isinstance(md, Container)

    def test_tampered(self, caplog):
        source = _source({"url": MD_URL, "cert": self.cert_file})
        _tampered = self.signed.replace("https://sp.example.org", "https://evil.example.com")
        with responses.RequestsMock() as rsps:
            rsps.add(rsps.GET, MD_URL, body=_tampered)
            assert source.download_metadata() is None
        assert "Unable to verify signature" in caplog.text

    def test_unsigned(self):
        source = _source({"url": MD_URL, "cert": self.cert_file})
        with responses.RequestsMock() as rsps:
            rsps.add(rsps.GET, MD_URL, body=read_metadata("federation.xml"))
            assert source.download_metadata() is None


class TestCache(object):
    @pytest.fixture(autouse=True)
    def create_source(self):
        self.cache = MemoryCache()
        self.source = _source({"url": MD_URL}, cache=self.cache)

    def test_update_cache(self):
        with responses.RequestsMock() as rsps:
            rsps.add(rsps.GET, MD_URL, body=read_metadata("example.xml"))
            self.source.update_cache()

        assert self.source.state == FetchState.FETCHED
        assert self.cache.is_valid(self.source.cache_id, self.source.cache_tag)
        assert parse_metadata(self.cache.load(self.source.cache_id)).entity_id == "urn:x"

    def test_update_cache_only_once(self):
        with responses.RequestsMock() as rsps:
            rsps.add(rsps.GET, MD_URL, body=read_metadata("example.xml"))
            self.source.update_cache()
            self.source.update_cache()
            assert len(rsps.calls) == 1

    def test_failed_update_not_retried(self):
        with responses.RequestsMock() as rsps:
            rsps.add(rsps.GET, MD_URL, status=404)
            self.source.update_cache()
            self.source.update_cache()
            assert len(rsps.calls) == 1
        assert self.source.state == FetchState.FAILED
        assert self.source.cache_id not in self.cache

    def test_expiry_from_valid_until(self):
        _xml = read_metadata("federation.xml").replace(b"2099-01-01T00:00:00Z",
                                                       b"2000-01-01T00:00:00Z")
        with responses.RequestsMock() as rsps:
            rsps.add(rsps.GET, MD_URL, body=_xml)
            self.source.update_cache()

        # Already expired, but stored
        assert self.source.state == FetchState.FETCHED
        assert self.cache.is_valid(self.source.cache_id, self.source.cache_tag) is False
        assert self.cache.load(self.source.cache_id)

    def test_expiry_from_entity_valid_until(self):
        _xml = read_metadata("example.xml").replace(
            b"entityID=\"urn:x\"", b"entityID=\"urn:x\" validUntil=\"2000-01-01T00:00:00Z\"")
        with responses.RequestsMock() as rsps:
            rsps.add(rsps.GET, MD_URL, body=_xml)
            self.source.update_cache()

        assert self.source.state == FetchState.FETCHED
        assert self.cache.is_valid(self.source.cache_id, self.source.cache_tag) is False
        assert parse_metadata(self.cache.load(self.source.cache_id)).entity_id == "urn:x"

    def test_expiry_at_most_a_day(self):
        with responses.RequestsMock() as rsps:
            rsps.add(rsps.GET, MD_URL, body=read_metadata("federation.xml"))
            self.source.update_cache()

        _now = utc_time_sans_frac()
        assert self.cache.is_valid(self.source.cache_id, self.source.cache_tag, now=_now + 86000)
        assert self.cache.is_valid(self.source.cache_id, self.source.cache_tag,
                                   now=_now + 86401) is False

    def test_get_metadata_fetches(self):
        with responses.RequestsMock() as rsps:
            rsps.add(rsps.GET, MD_URL, body=read_metadata("example.xml"))
            md = self.source.get_metadata()
            assert self.source.get_metadata() is md
            assert len(rsps.calls) == 1
        assert md.entity_id == "urn:x"

    def test_get_metadata_from_valid_cache(self):
        _md = parse_metadata(read_metadata("example.xml"))
        self.cache.put(self.source.cache_id, serialize(_md), utc_time_sans_frac() + 100,
                       self.source.cache_tag)
        with responses.RequestsMock() as rsps:
            md = self.source.get_metadata()
            assert len(rsps.calls) == 0
        assert md.entity_id == "urn:x"
        assert self.source.state == FetchState.NOT_ATTEMPTED

    def test_stale_cache_used_when_source_down(self):
        _md = parse_metadata(read_metadata("example.xml"))
        self.cache.put(self.source.cache_id, serialize(_md), utc_time_sans_frac() - 100,
                       self.source.cache_tag)
        with responses.RequestsMock() as rsps:
            rsps.add(rsps.GET, MD_URL, status=503)
            md = self.source.get_metadata()
        assert self.source.state == FetchState.FAILED
        assert md.entity_id == "urn:x"

    def test_cache_with_other_tag_is_refreshed(self):
        _md = parse_metadata(read_metadata("example.xml"))
        self.cache.put(self.source.cache_id, serialize(_md), utc_time_sans_frac() + 100, "old")
        with responses.RequestsMock() as rsps:
            rsps.add(rsps.GET, MD_URL, body=read_metadata("federation.xml"))
            md = self.source.get_metadata()
        assert isinstance(md, Container)

    def test_nothing_available(self, caplog):
        with caplog.at_level(logging.ERROR):
            with responses.RequestsMock() as rsps:
                rsps.add(rsps.GET, MD_URL, status=503)
                assert self.source.get_metadata() is None
        assert "No cached metadata available" in caplog.text

    def test_cache_keys(self):
        other = _source({"url": MD_URL, "cert": "some.crt"})
        assert other.cache_id == self.source.cache_id
        assert other.cache_tag != self.source.cache_tag
