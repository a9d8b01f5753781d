"""Deployment request validation."""

from typing import Any, Iterable

from app.core.exceptions import InvalidRequest
from app.models.deployment import DeploymentRequest


class RequestValidator:
    """Checks a deployment request before anything is dispatched.

    All violations are collected so a caller can fix every problem in a
    single round-trip.

    An empty environment allow-list accepts any environment name. An empty
    input-key allow-list accepts no inputs at all.
    """

    def __init__(
        self,
        allowed_environments: Iterable[str] = (),
        allowed_input_keys: Iterable[str] = (),
    ):
        self.allowed_environments = frozenset(allowed_environments)
        self.allowed_input_keys = frozenset(allowed_input_keys)

    def violations(self, request: DeploymentRequest) -> list[dict[str, Any]]:
        """Return every violation found in the request."""
        found: list[dict[str, Any]] = []

        environment = request.environment.strip()
        if not environment:
            found.append(
                {"field": "environment", "message": "environment must not be empty"}
            )
        elif self.allowed_environments and environment not in self.allowed_environments:
            found.append(
                {
                    "field": "environment",
                    "message": f"unknown environment '{environment}'",
                    "allowed": sorted(self.allowed_environments),
                }
            )

        if not request.ref.strip():
            found.append({"field": "ref", "message": "ref must not be empty"})

        for key in sorted(request.inputs):
            if key not in self.allowed_input_keys:
                found.append(
                    {
                        "field": f"inputs.{key}",
                        "message": f"input '{key}' is not allowed",
                    }
                )

        return found

    def validate(self, request: DeploymentRequest) -> DeploymentRequest:
        """Validate a request.

        Returns the request with environment and ref stripped of surrounding
        whitespace; everything downstream keys on these values.

        Raises:
            InvalidRequest: listing every violation
        """
        found = self.violations(request)
        if found:
            raise InvalidRequest(found)
        return request.model_copy(
            update={
                "environment": request.environment.strip(),
                "ref": request.ref.strip(),
            }
        )
