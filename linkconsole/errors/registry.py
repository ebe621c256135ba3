"""Error code registry with E-XXXX format codes.

Organizes the console's errors into categories:
- E-2xxx: Validation errors (connection names, owners)
- E-3xxx: Remote link service errors
- E-4xxx: Store/system errors

Each error includes a code, title, message template, and remediation steps.
"""

from dataclasses import dataclass
from enum import Enum


class ErrorCategory(str, Enum):
    """Categories for error codes."""

    VALIDATION = "validation"  # E-2xxx
    REMOTE = "remote"  # E-3xxx
    SYSTEM = "system"  # E-4xxx


@dataclass
class ErrorCode:
    """Definition of an error code with metadata.

    Attributes:
        code: Error code in E-XXXX format.
        category: Error category for grouping.
        title: Short title for display.
        message_template: Message with {placeholders} for context.
        remediation: Action user should take to resolve.
        is_retryable: Whether the operation can be retried without user action.
    """

    code: str
    category: ErrorCategory
    title: str
    message_template: str
    remediation: str
    is_retryable: bool = False

    def format(self, **context: object) -> str:
        """Render the message template, leaving unknown placeholders intact."""
        try:
            return self.message_template.format(**context)
        except (KeyError, IndexError):
            return self.message_template


ERROR_REGISTRY: dict[str, ErrorCode] = {
    # Validation errors (E-2xxx)
    "E-2001": ErrorCode(
        code="E-2001",
        category=ErrorCategory.VALIDATION,
        title="Connection Name Required",
        message_template="Connection name is required.",
        remediation="Enter a name for the connection.",
    ),
    "E-2002": ErrorCode(
        code="E-2002",
        category=ErrorCategory.VALIDATION,
        title="Connection Name Contains Whitespace",
        message_template="Connection name cannot contain spaces.",
        remediation="Use '_' or '-' instead of spaces.",
    ),
    "E-2003": ErrorCode(
        code="E-2003",
        category=ErrorCategory.VALIDATION,
        title="Connection Name Too Short",
        message_template="Connection name must have at least {min_length} characters.",
        remediation="Choose a longer name.",
    ),
    "E-2004": ErrorCode(
        code="E-2004",
        category=ErrorCategory.VALIDATION,
        title="Connection Name Too Long",
        message_template="Connection name must have at most {max_length} characters.",
        remediation="Choose a shorter name.",
    ),
    "E-2005": ErrorCode(
        code="E-2005",
        category=ErrorCategory.VALIDATION,
        title="Connection Name Has Invalid Characters",
        message_template="Only letters, digits, underscore (_) and hyphen (-) are allowed.",
        remediation="Remove accents, symbols and punctuation from the name.",
    ),
    "E-2006": ErrorCode(
        code="E-2006",
        category=ErrorCategory.VALIDATION,
        title="Connection Name In Use",
        message_template="A connection named '{name}' already exists.",
        remediation="Pick a different name or import the existing instance.",
    ),
    "E-2007": ErrorCode(
        code="E-2007",
        category=ErrorCategory.VALIDATION,
        title="Owner Inactive",
        message_template="Owner '{owner_id}' is not active.",
        remediation="Ask an administrator to activate the account.",
    ),
    # Remote link service errors (E-3xxx)
    "E-3001": ErrorCode(
        code="E-3001",
        category=ErrorCategory.REMOTE,
        title="Link Service Unavailable",
        message_template="The link service could not be reached during {operation}.",
        remediation="Check network connectivity and the link service base URL.",
        is_retryable=True,
    ),
    "E-3002": ErrorCode(
        code="E-3002",
        category=ErrorCategory.REMOTE,
        title="Link Service Error",
        message_template="The link service returned HTTP {status_code} during {operation}.",
        remediation="Retry in a moment. If the error persists, check the provider logs.",
        is_retryable=True,
    ),
    "E-3003": ErrorCode(
        code="E-3003",
        category=ErrorCategory.REMOTE,
        title="Malformed Link Service Response",
        message_template="The link service response for {operation} was missing {field}.",
        remediation="Check the provider workflow output format.",
    ),
    "E-3004": ErrorCode(
        code="E-3004",
        category=ErrorCategory.REMOTE,
        title="Instance Not Found",
        message_template="Instance '{name}' was not found on the link service.",
        remediation="Verify the instance name on the provider side.",
    ),
    "E-3005": ErrorCode(
        code="E-3005",
        category=ErrorCategory.REMOTE,
        title="Link Service Timeout",
        message_template="The link service timed out during {operation}.",
        remediation="Retry in a moment.",
        is_retryable=True,
    ),
    # Store/system errors (E-4xxx)
    "E-4001": ErrorCode(
        code="E-4001",
        category=ErrorCategory.SYSTEM,
        title="Store Write Failed",
        message_template="Could not {operation} the connection record.",
        remediation="Check database availability and retry.",
        is_retryable=True,
    ),
    "E-4002": ErrorCode(
        code="E-4002",
        category=ErrorCategory.SYSTEM,
        title="Store Read Failed",
        message_template="Could not read connection records.",
        remediation="Check database availability and retry.",
        is_retryable=True,
    ),
}


def get_error(code: str) -> ErrorCode | None:
    """Get error definition by code.

    Args:
        code: Error code in E-XXXX format.

    Returns:
        ErrorCode if found, None otherwise.
    """
    return ERROR_REGISTRY.get(code)


def get_errors_by_category(category: ErrorCategory) -> list[ErrorCode]:
    """Get all errors in a category.

    Args:
        category: The error category to filter by.

    Returns:
        List of ErrorCode objects in the specified category.
    """
    return [e for e in ERROR_REGISTRY.values() if e.category == category]
