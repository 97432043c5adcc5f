"""Exception types shared across spec-graph."""


class SpecGraphError(Exception):
    pass


class ResultValidationError(SpecGraphError):
    """A model response failed the structural re-parse check."""


class UnreadableDocumentError(SpecGraphError):
    """A document file could not be decoded as UTF-8 text."""

    def __init__(self, path, reason):
        super().__init__(f"{path}: not valid UTF-8 text ({reason})")
        self.path = path
        self.reason = reason


class ModelError(SpecGraphError):
    """Base for every failure of the model collaborator."""

    kind = "model"

    def __str__(self):
        return f"{self.kind} error: {super().__str__()}"


class AuthError(ModelError):
    kind = "auth"


class RateLimitError(ModelError):
    kind = "rate-limit"


class TransportError(ModelError):
    kind = "transport"


class ModelTimeoutError(ModelError):
    kind = "timeout"


class EmptyResponseError(ModelError):
    kind = "empty-response"
