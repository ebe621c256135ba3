"""Typed domain exceptions for API error mapping.

Routes catch specific exception types to return the matching HTTP
status code instead of matching on message strings.

Usage:
    # In service layer
    raise NotFoundError("Connection", connection_id)

    # In route handler
    try:
        engine.get(connection_id)
    except NotFoundError as e:
        return JSONResponse(status_code=404, ...)
"""

from enum import Enum

from linkconsole.errors.registry import get_error


class DomainError(Exception):
    """Base exception for all domain errors."""

    code = "E-4000"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(DomainError):
    """Resource was not found. Maps to HTTP 404."""

    code = "NOT_FOUND"

    def __init__(self, resource_type: str, identifier: str) -> None:
        super().__init__(f"{resource_type} '{identifier}' not found")
        self.resource_type = resource_type
        self.identifier = identifier


class ConflictError(DomainError):
    """Resource conflict (e.g., duplicate). Maps to HTTP 409."""

    code = "E-2006"


class ValidationError(DomainError):
    """Validation failure. Maps to HTTP 400."""

    code = "E-2000"


class NameRule(str, Enum):
    """Connection name rules, listed in the order they are checked."""

    empty = "empty"
    whitespace = "whitespace"
    too_short = "too_short"
    too_long = "too_long"
    invalid_character = "invalid_character"


_RULE_CODES = {
    NameRule.empty: "E-2001",
    NameRule.whitespace: "E-2002",
    NameRule.too_short: "E-2003",
    NameRule.too_long: "E-2004",
    NameRule.invalid_character: "E-2005",
}


class ConnectionNameError(ValidationError):
    """Connection name violates one naming rule."""

    def __init__(self, rule: NameRule, **context: object) -> None:
        self.rule = rule
        self.code = _RULE_CODES[rule]
        super().__init__(get_error(self.code).format(**context))


class DuplicateConnectionError(ConflictError):
    """Connection name already stored or being created. Maps to HTTP 409."""

    def __init__(self, name: str) -> None:
        super().__init__(get_error("E-2006").format(name=name))
        self.name = name


class InactiveOwnerError(DomainError):
    """Owner is not allowed to manage connections. Maps to HTTP 403."""

    code = "E-2007"

    def __init__(self, owner_id: str) -> None:
        super().__init__(get_error("E-2007").format(owner_id=owner_id))
        self.owner_id = owner_id
