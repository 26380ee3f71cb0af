import datetime
import os

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

BASE_PATH = os.path.abspath(os.path.dirname(__file__))
METADATA_DIR = os.path.join(BASE_PATH, 'metadata')


def full_path(name):
    return os.path.join(METADATA_DIR, name)


def read_metadata(name):
    with open(full_path(name), 'rb') as fp:
        return fp.read()


def make_key_and_cert(directory, name="signing", passphrase=None):
    """
    Create a RSA key and a self signed certificate for it.

    :return: Tuple with the names of the key and certificate files
    """
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "md.example.org")])
    _now = datetime.datetime.now(datetime.timezone.utc)
    cert = x509.CertificateBuilder().subject_name(subject).issuer_name(subject).public_key(
        key.public_key()).serial_number(x509.random_serial_number()).not_valid_before(
        _now - datetime.timedelta(days=1)).not_valid_after(
        _now + datetime.timedelta(days=365)).sign(key, hashes.SHA256())

    if passphrase:
        _encryption = serialization.BestAvailableEncryption(passphrase.encode("utf-8"))
    else:
        _encryption = serialization.NoEncryption()

    key_file = os.path.join(str(directory), f"{name}.key")
    with open(key_file, "wb") as fp:
        fp.write(key.private_bytes(encoding=serialization.Encoding.PEM,
                                   format=serialization.PrivateFormat.TraditionalOpenSSL,
                                   encryption_algorithm=_encryption))

    cert_file = os.path.join(str(directory), f"{name}.crt")
    with open(cert_file, "wb") as fp:
        fp.write(cert.public_bytes(serialization.Encoding.PEM))

    return key_file, cert_file
