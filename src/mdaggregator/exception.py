class AggregatorError(Exception):
    pass


class ConfigurationError(AggregatorError):
    pass


class UnknownAggregator(AggregatorError):
    pass


class BadRequest(AggregatorError):
    pass


class MetadataError(AggregatorError):
    pass


class SignatureFailure(AggregatorError):
    pass
