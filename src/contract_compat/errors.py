"""Exceptions raised while loading contracts and resolving endpoints."""


class ContractCompatError(Exception):
    """Base class for all contract-compat errors."""


class MalformedSpecification(ContractCompatError):
    """The provider specification cannot be interpreted."""

    def __init__(self, message: str, location: str | None = None):
        self.location = location
        super().__init__(f"{location}: {message}" if location else message)


class MalformedInteraction(ContractCompatError):
    """A consumer interaction record cannot be interpreted."""

    def __init__(self, message: str, location: str | None = None):
        self.location = location
        super().__init__(f"{location}: {message}" if location else message)


class UnknownPathOrMethod(ContractCompatError):
    """No endpoint in the specification matches the method and path."""

    def __init__(self, method: str, path: str):
        self.method = method
        self.path = path
        super().__init__(f"No endpoint matches {method} {path}")
