"""Custom exceptions for x402guard."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class X402GuardException(Exception):
    """Base class for x402guard exceptions."""

    message: str
    http_status: int = 400
    details: dict[str, object] | None = None

    def __str__(self) -> str:  # pragma: no cover - dataclass str wrapper
        return self.message


@dataclass
class ParseError(X402GuardException):
    """Raised when a policy document cannot be loaded."""

    http_status: int = 422


class PolicySyntaxError(ParseError):
    """Malformed YAML or a value of the wrong shape."""


class UnknownPolicyType(ParseError):
    """A policy entry names a ``type`` that is not recognised."""


@dataclass
class MissingField(ParseError):
    """A field required by the policy type is absent."""

    field: str = ""


class EmptyPolicySet(ParseError):
    """The document declares no policies."""


@dataclass
class CodegenError(X402GuardException):
    """Raised when middleware cannot be generated."""

    http_status: int = 500


class UnsupportedFramework(CodegenError):
    """No generator exists for the requested framework."""


class UnsupportedRule(CodegenError):
    """A policy kind has no code generation mapping."""


@dataclass
class PolicyDenied(X402GuardException):
    """Raised when the guard denies a request."""

    http_status: int = 403
