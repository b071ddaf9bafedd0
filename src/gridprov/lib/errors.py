"""Custom exception hierarchy for gridprov configuration and provisioning."""

from __future__ import annotations


class GridProvError(Exception):
    """Base exception for all gridprov errors.

    All gridprov-specific exceptions inherit from this class, enabling
    centralized exception handling at the command surface.
    """

    pass


class ConfigError(GridProvError):
    """Exception raised for configuration errors.

    Raised when the desired-state manifest or the persisted state cannot be
    loaded or parsed.

    Attributes:
        field: The configuration field that caused the error
        message: Human-readable error message describing the issue
    """

    def __init__(self, field: str, message: str) -> None:
        """Initialize ConfigError with field and message.

        Args:
            field: Configuration field name where error occurred
            message: Descriptive error message
        """
        self.field = field
        self.message = message
        super().__init__(f"Configuration error in '{field}': {message}")


class ValidationError(GridProvError):
    """Exception raised when declared state fails validation.

    Validation errors are always raised before any remote call is issued.

    Attributes:
        field: The field that failed validation
        message: Description of the validation failure
        expected: Human description of expected value/type
        actual: The actual value that failed validation
    """

    def __init__(
        self,
        field: str,
        message: str,
        expected: str,
        actual: str,
    ) -> None:
        """Initialize ValidationError with detailed information.

        Args:
            field: Field that failed validation (can use dot notation)
            message: Description of what went wrong
            expected: Human-readable description of expected value
            actual: The actual value that failed
        """
        self.field = field
        self.message = message
        self.expected = expected
        self.actual = actual
        full_message = (
            f"Validation error in '{field}': {message}\n"
            f"  Expected: {expected}\n"
            f"  Got: {actual}"
        )
        super().__init__(full_message)


class InvalidResourceError(ValidationError):
    """A declared resource is malformed or references an unknown resource.

    Attributes:
        resource: Name of the offending resource
    """

    def __init__(
        self,
        resource: str,
        message: str,
        expected: str = "a valid resource definition",
        actual: str = "",
    ) -> None:
        """Create an error for a single declared resource."""
        self.resource = resource
        super().__init__(
            field=resource, message=message, expected=expected, actual=actual
        )


class TopologyError(ValidationError):
    """The network node set cannot produce a consistent mesh."""

    def __init__(self, message: str, actual: str = "") -> None:
        """Create a topology validation error."""
        super().__init__(
            field="network.nodes",
            message=message,
            expected="a node set consistent with the access configuration",
            actual=actual,
        )


class AddressSpaceExhaustedError(GridProvError):
    """No free address or subnet is left in an IP range.

    Attributes:
        ip_range: The range that was scanned
    """

    def __init__(self, ip_range: str, message: str | None = None) -> None:
        """Create an exhaustion error for the given range."""
        self.ip_range = ip_range
        self.message = message or f"All addresses in {ip_range} are in use"
        super().__init__(self.message)


class PortAllocationError(GridProvError):
    """No free listen port was found on a node within the attempt cap.

    Attributes:
        node_id: Node whose reserved ports were sampled
        attempts: Number of samples drawn before giving up
    """

    def __init__(self, node_id: int, attempts: int) -> None:
        """Create a port allocation error."""
        self.node_id = node_id
        self.attempts = attempts
        super().__init__(
            f"No free listen port found on node {node_id} after {attempts} attempts"
        )


class DeploymentError(GridProvError):
    """Exception raised when a deployment operation fails.

    Attributes:
        operation: The operation that failed (create, update, cancel, state, ...)
        message: Human-readable error message
    """

    def __init__(self, operation: str, message: str) -> None:
        """Create a deployment error for an operation."""
        self.operation = operation
        self.message = message
        super().__init__(f"Deployment {operation} failed: {message}")


class RemoteSubmitError(DeploymentError):
    """A ledger or node agent call failed.

    Attributes:
        node_id: Target node, when known
        contract_id: Contract involved, when known
    """

    def __init__(
        self,
        operation: str,
        message: str,
        node_id: int | None = None,
        contract_id: int | None = None,
    ) -> None:
        """Create a remote submission error with locating context."""
        self.node_id = node_id
        self.contract_id = contract_id
        context = []
        if node_id is not None:
            context.append(f"node {node_id}")
        if contract_id:
            context.append(f"contract {contract_id}")
        if context:
            message = f"{message} ({', '.join(context)})"
        super().__init__(operation=operation, message=message)


class WorkloadFailedError(DeploymentError):
    """The node agent reported a non-success terminal state for a workload.

    Attributes:
        index: Position of the workload inside the deployment
        contract_id: Deployment (contract) identifier
        node_id: Node the deployment lives on
        error: Error text reported by the node agent
    """

    def __init__(self, index: int, contract_id: int, node_id: int, error: str) -> None:
        """Create a workload failure error."""
        self.index = index
        self.contract_id = contract_id
        self.node_id = node_id
        self.error = error
        super().__init__(
            operation="wait",
            message=(
                f"workload {index} failed within deployment {contract_id} "
                f"on node {node_id} with error {error}"
            ),
        )


class DeploymentTimeoutError(DeploymentError):
    """Polling ran out of budget before every workload reached a final state.

    Attributes:
        contract_id: Deployment (contract) identifier
        node_id: Node the deployment lives on
        budget: Polling budget in seconds
    """

    def __init__(self, contract_id: int, node_id: int, budget: float) -> None:
        """Create a polling timeout error."""
        self.contract_id = contract_id
        self.node_id = node_id
        self.budget = budget
        super().__init__(
            operation="wait",
            message=(
                f"waiting for deployment {contract_id} on node {node_id} "
                f"timed out after {budget:g}s"
            ),
        )
