import xmlsec

MD_NS = "urn:oasis:names:tc:SAML:2.0:metadata"
MDRPI_NS = "urn:oasis:names:tc:SAML:metadata:rpi"
DS_NS = "http://www.w3.org/2000/09/xmldsig#"
XML_NS = "http://www.w3.org/XML/1998/namespace"

NAMESPACES = {
    "md": MD_NS,
    "mdrpi": MDRPI_NS,
    "ds": DS_NS
}

SAML2_PROTOCOL = "urn:oasis:names:tc:SAML:2.0:protocol"

IDP_ROLE = "IDPSSODescriptor"
SP_ROLE = "SPSSODescriptor"
AA_ROLE = "AttributeAuthorityDescriptor"

# Every md element that is a RoleDescriptor or one of its subtypes
ROLE_DESCRIPTORS = [
    "RoleDescriptor",
    IDP_ROLE,
    SP_ROLE,
    "AuthnAuthorityDescriptor",
    AA_ROLE,
    "PDPDescriptor"
]

# filter token -> the protocols and roles it enables
FILTER_PROTOCOLS = {
    SAML2_PROTOCOL: ["saml2", "saml20-idp", "saml20-sp", "saml20-aa"]
}

FILTER_ROLES = {
    IDP_ROLE: ["saml2", "saml20-idp"],
    SP_ROLE: ["saml2", "saml20-sp"],
    AA_ROLE: ["saml2", "saml20-aa"]
}

SIG_RSA_SHA1 = "http://www.w3.org/2000/09/xmldsig#rsa-sha1"
SIG_RSA_SHA224 = "http://www.w3.org/2001/04/xmldsig-more#rsa-sha224"
SIG_RSA_SHA256 = "http://www.w3.org/2001/04/xmldsig-more#rsa-sha256"
SIG_RSA_SHA384 = "http://www.w3.org/2001/04/xmldsig-more#rsa-sha384"
SIG_RSA_SHA512 = "http://www.w3.org/2001/04/xmldsig-more#rsa-sha512"

# signature algorithm -> (signature transform, digest transform)
RSA_DIGESTS = {
    SIG_RSA_SHA1: (xmlsec.constants.TransformRsaSha1, xmlsec.constants.TransformSha1),
    SIG_RSA_SHA224: (xmlsec.constants.TransformRsaSha224, xmlsec.constants.TransformSha224),
    SIG_RSA_SHA256: (xmlsec.constants.TransformRsaSha256, xmlsec.constants.TransformSha256),
    SIG_RSA_SHA384: (xmlsec.constants.TransformRsaSha384, xmlsec.constants.TransformSha384),
    SIG_RSA_SHA512: (xmlsec.constants.TransformRsaSha512, xmlsec.constants.TransformSha512),
}

DEFAULT_SIGN_ALGORITHM = SIG_RSA_SHA256

# How long the generated aggregate is valid, in seconds
DEFAULT_VALID_LENGTH = 7 * 24 * 60 * 60

# Upper bound on how long a downloaded source is cached, in seconds
SOURCE_CACHE_LIFETIME = 24 * 60 * 60

DEFAULT_HTTPC_PARAMS = {
    "timeout": 30
}

DEFAULT_CERT_DIR = "cert"

ALLOWED_MIME_TYPES = [
    'text/plain',
    'application/samlmetadata-xml',
    'application/xml',
]

DEFAULT_MIME_TYPE = 'application/samlmetadata+xml'
