import logging
from typing import Optional

import xmlsec
from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptojwt.jwk.rsa import import_private_rsa_key_from_file
from idpyoidc.util import rndstr

from mdaggregator.defaults import DEFAULT_SIGN_ALGORITHM
from mdaggregator.defaults import DS_NS
from mdaggregator.defaults import RSA_DIGESTS
from mdaggregator.exception import ConfigurationError
from mdaggregator.exception import SignatureFailure

logger = logging.getLogger(__name__)

SIGNATURE = f"{{{DS_NS}}}Signature"


class Signer(object):
    """
    Adds an enveloped XML signature to metadata elements.

    Key and certificate are read when the signer is created so that a bad
    configuration is discovered before any metadata is produced.
    """

    def __init__(self,
                 key_file: str,
                 certificate: Optional[str] = None,
                 algorithm: Optional[str] = DEFAULT_SIGN_ALGORITHM,
                 passphrase: Optional[str] = None):
        if algorithm not in RSA_DIGESTS:
            raise ConfigurationError(f"Unsupported signature algorithm {algorithm!r}")
        self.algorithm = algorithm

        if isinstance(passphrase, str):
            passphrase = passphrase.encode("utf-8")

        try:
            _key = import_private_rsa_key_from_file(key_file, passphrase=passphrase)
        except (OSError, ValueError, TypeError) as err:
            raise ConfigurationError(f"Unable to load signing key {key_file!r}: {err}")
        if not isinstance(_key, rsa.RSAPrivateKey):
            raise ConfigurationError(f"Not a RSA private key: {key_file!r}")

        self.key_pem = _key.private_bytes(encoding=serialization.Encoding.PEM,
                                          format=serialization.PrivateFormat.PKCS8,
                                          encryption_algorithm=serialization.NoEncryption())

        self.cert_pem = None
        if certificate:
            try:
                with open(certificate, "rb") as fp:
                    _pem = fp.read()
                x509.load_pem_x509_certificate(_pem)
            except (OSError, ValueError) as err:
                raise ConfigurationError(f"Unable to load certificate {certificate!r}: {err}")
            self.cert_pem = _pem

    def _key(self):
        _key = xmlsec.Key.from_memory(self.key_pem, xmlsec.constants.KeyDataFormatPem, None)
        if self.cert_pem:
            _key.load_cert_from_memory(self.cert_pem, xmlsec.constants.KeyDataFormatPem)
        return _key

    def sign(self, element):
        """
        Sign the element in place. The signature is put first among the
        children as the metadata schema requires.

        :param element: A lxml element
        """
        _sig_alg, _digest_alg = RSA_DIGESTS[self.algorithm]

        _id = element.get("ID")
        if not _id:
            _id = f"_{rndstr(32)}"
            element.set("ID", _id)

        _signature = xmlsec.template.create(element, xmlsec.constants.TransformExclC14N, _sig_alg,
                                            ns="ds")
        element.insert(0, _signature)

        _ref = xmlsec.template.add_reference(_signature, _digest_alg, uri=f"#{_id}")
        xmlsec.template.add_transform(_ref, xmlsec.constants.TransformEnveloped)
        xmlsec.template.add_transform(_ref, xmlsec.constants.TransformExclC14N)

        if self.cert_pem:
            _key_info = xmlsec.template.ensure_key_info(_signature)
            _x509_data = xmlsec.template.add_x509_data(_key_info)
            xmlsec.template.x509_data_add_certificate(_x509_data)

        xmlsec.tree.add_ids(element, ["ID"])
        _ctx = xmlsec.SignatureContext()
        _ctx.key = self._key()
        _ctx.sign(_signature)
        return element


def verify_signature(element, cert_file: str):
    """
    Verify the enveloped signature on a metadata element using the public key
    in a certificate. The signature method is the one given in the document.

    :param element: The root element of the signed document
    :param cert_file: File containing a PEM encoded certificate
    :raises SignatureFailure: if the element is not signed or the signature
        can not be verified.
    """
    _signature = element.find(SIGNATURE)
    if _signature is None:
        raise SignatureFailure("Metadata is not signed")

    # The signature must cover the element it is attached to
    _id = element.get("ID")
    _uris = [r.get("URI") for r in _signature.iterfind(f"{{{DS_NS}}}SignedInfo/{{{DS_NS}}}Reference")]
    if len(_uris) != 1 or _uris[0] not in ("", f"#{_id}"):
        raise SignatureFailure("Signature does not reference the signed element")

    xmlsec.tree.add_ids(element, ["ID"])
    try:
        _key = xmlsec.Key.from_file(cert_file, xmlsec.constants.KeyDataFormatCertPem)
        _ctx = xmlsec.SignatureContext()
        _ctx.key = _key
        _ctx.verify(_signature)
    except (xmlsec.Error, OSError) as err:
        raise SignatureFailure(f"Signature verification failed: {err}")
