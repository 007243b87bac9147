#!/usr/bin/env python3
"""Exception hierarchy shared by the CLI, the service and the query engine."""


class JsonLensError(Exception):
    """Base class for every error raised on purpose by json-lens."""


class SourceUnavailableError(JsonLensError):
    """The input file is missing or cannot be read."""

    def __init__(self, path, cause: Exception):
        self.path = str(path)
        self.cause = cause
        super().__init__(f"cannot read {self.path}: {cause}")


class StreamParseError(JsonLensError):
    """The input file is not valid JSON."""

    def __init__(self, path, cause: Exception):
        self.path = str(path)
        self.cause = cause
        super().__init__(f"malformed JSON in {self.path}: {cause}")


class InvalidFilterError(JsonLensError):
    """Raised for an unparseable filter expression in strict mode."""

    def __init__(self, expression: str):
        self.expression = expression
        super().__init__(f"Invalid filter expression: {expression}")


class RelationshipNotFoundError(JsonLensError):
    """No join key could be detected between two files."""


class TypeBridgeError(JsonLensError):
    """The knowledge-base process could not be reached or answered badly."""
