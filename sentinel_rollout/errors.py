"""Exceptions raised by the rollout engine."""


class FatalDeploymentError(Exception):
    """The deploy cannot continue."""

    pass


class DeploymentTimeoutError(FatalDeploymentError):
    """Resources did not finish rolling out before their deadline."""

    pass


class TaskConfigurationError(FatalDeploymentError):
    """The deploy task was configured incorrectly."""

    pass


class NamespaceNotFoundError(TaskConfigurationError):
    """Target namespace does not exist."""

    def __init__(self, name: str, context: str):
        super().__init__(f"Namespace `{name}` not found in context `{context}`")
        self.name = name
        self.context = context


class InvalidTemplateError(FatalDeploymentError):
    """A manifest could not be parsed or is missing required fields."""

    def __init__(self, message: str, filename: str = None, content: str = None):
        super().__init__(message)
        self.filename = filename
        self.content = content


class RolloutConditionsError(Exception):
    """Rollout conditions declared on a CRD are malformed."""

    pass


class KubectlError(Exception):
    """A kubectl invocation failed."""

    pass


class ResourceNotFoundError(KubectlError):
    """kubectl reported that the requested object does not exist."""

    pass
