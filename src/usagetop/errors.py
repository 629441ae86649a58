class UsagetopError(Exception):
    """
    base class for every error raised by usagetop.
    """


class FetchError(UsagetopError):
    """
    FetchError is raised when a provider dataset could not be
    retrieved (network, HTTP status, auth). It is recovered by
    keeping the previous data and flagging it stale.
    """

    def __init__(self, provider: "str", metric: "str", message: "str") -> "None":
        super().__init__(f"{provider} {metric}: {message}")
        self.provider = provider
        self.metric = metric
        self.message = message


class ParseError(UsagetopError):
    """
    ParseError is raised for a malformed payload field. Adapters
    recover by defaulting the field to zero.
    """

    def __init__(self, field: "str", value: "object") -> "None":
        super().__init__(f"malformed value for {field!r}: {value!r}")
        self.field = field
        self.value = value


class ConfigError(UsagetopError):
    """
    ConfigError is raised when no admin key is configured.
    """


class RenderPreconditionError(UsagetopError):
    """
    RenderPreconditionError is raised when a selection asks for a
    grouping the provider or metric cannot supply.
    """
