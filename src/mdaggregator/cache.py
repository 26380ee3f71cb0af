import logging
import os
import tempfile
from typing import Optional
from typing import Union

from cryptojwt.jwt import utc_time_sans_frac

logger = logging.getLogger(__name__)


class CacheStore(object):
    """
    Storage for cached blobs. Every item has an expiration time and an
    optional tag. An item is only valid before it expires and if the tag
    presented on lookup is the same as the one it was stored with.
    """

    def is_valid(self, key: str, tag: Optional[str] = None, now: Optional[int] = None) -> bool:
        raise NotImplementedError()

    def load(self, key: str) -> Optional[bytes]:
        """
        Return the stored data whether it is valid or not.

        :param key: The identifier of the data
        :return: The data or None if nothing is stored under key
        """
        raise NotImplementedError()

    def put(self, key: str, data: Union[str, bytes], expires: int, tag: Optional[str] = None):
        raise NotImplementedError()

    def get(self, key: str, tag: Optional[str] = None) -> Optional[bytes]:
        if not self.is_valid(key, tag):
            return None
        return self.load(key)


def _as_bytes(data):
    if isinstance(data, str):
        return data.encode("utf-8")
    return data


class MemoryCache(CacheStore):
    def __init__(self):
        self._db = {}

    def is_valid(self, key, tag=None, now=None):
        try:
            _data, _expires, _tag = self._db[key]
        except KeyError:
            return False

        if now is None:
            now = utc_time_sans_frac()
        if _expires <= now:
            return False
        return _tag == tag

    def load(self, key):
        try:
            return self._db[key][0]
        except KeyError:
            return None

    def put(self, key, data, expires, tag=None):
        self._db[key] = (_as_bytes(data), int(expires), tag)

    def __contains__(self, item):
        return item in self._db

    def __len__(self):
        return len(self._db)


class FileCache(CacheStore):
    """
    Keeps every item in a file named by the key in the cache directory.
    A sibling file named <key>.expire holds "<expiration time>[:<tag>]".
    """

    def __init__(self, directory: Optional[str] = None):
        self.directory = os.path.abspath(directory or tempfile.gettempdir())

    def cache_file(self, key: str) -> str:
        return os.path.join(self.directory, key)

    def _write(self, filename, data):
        os.makedirs(self.directory, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as fp:
                fp.write(data)
            os.replace(tmp_name, filename)
        except OSError:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def put(self, key, data, expires, tag=None):
        _file = self.cache_file(key)
        try:
            self._write(_file, _as_bytes(data))
        except OSError as err:
            logger.warning(f"Unable to write to cache file {_file!r}: {err}")
            return

        _info = str(int(expires))
        if tag is not None:
            _info += f":{tag}"

        _expire_file = f"{_file}.expire"
        try:
            self._write(_expire_file, _info.encode("utf-8"))
        except OSError as err:
            logger.warning(f"Unable to write expiration info to {_expire_file!r}: {err}")

    def is_valid(self, key, tag=None, now=None):
        _file = self.cache_file(key)
        if not os.path.isfile(_file):
            return False

        try:
            with open(f"{_file}.expire") as fp:
                _info = fp.read()
        except OSError:
            return False

        _parts = _info.split(":", 1)
        try:
            _expires = int(_parts[0])
        except ValueError:
            return False

        if now is None:
            now = utc_time_sans_frac()
        if _expires <= now:
            return False

        if len(_parts) == 1:
            _tag = None
        else:
            _tag = _parts[1]

        return _tag == tag

    def load(self, key):
        try:
            with open(self.cache_file(key), "rb") as fp:
                return fp.read()
        except OSError:
            return None
