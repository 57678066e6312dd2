"""Exception hierarchy for the bypass engine."""


class BypassError(Exception):
    """Base class for all engine errors."""


class DuplicateDomainError(BypassError):
    """A domain with the same normalized name is already configured."""

    def __init__(self, domain: str):
        super().__init__(f"Domain '{domain}' already exists")
        self.domain = domain


class InvalidDomainError(BypassError):
    """Input normalizes to an empty or malformed hostname."""

    def __init__(self, value: str):
        super().__init__(f"Invalid domain: {value!r}")
        self.value = value


class UnknownEntryError(BypassError):
    """No domain or service matches the given identifier."""

    def __init__(self, kind: str, key: str):
        super().__init__(f"Unknown {kind}: {key!r}")
        self.kind = kind
        self.key = key


class ExecutorError(BypassError):
    """The privileged helper could not be reached or answered garbage."""


class HelperRejectedError(ExecutorError):
    """The helper answered but refused the request."""
