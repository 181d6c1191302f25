"""Error taxonomy for cluster provisioning.

Every error aborts the current provisioning run. Errors carry the node name
and the phase they were raised in so the invoker can tell where a run stopped.
"""

from typing import Optional


class ProvisioningError(Exception):
    """Base class for all provisioning failures."""

    phase = "provisioning"

    def __init__(self, message: str, node_name: Optional[str] = None, phase: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.node_name = node_name
        if phase is not None:
            self.phase = phase

    def __str__(self) -> str:
        if self.node_name:
            return f"[{self.node_name}/{self.phase}] {self.message}"
        return self.message


class ConfigurationError(ProvisioningError):
    """Missing or invalid credentials, endpoint or cluster configuration."""

    phase = "configuration"


class RandomSourceError(ProvisioningError):
    """The entropy source could not produce random bytes."""

    phase = "identity"


class TemplateReadError(ProvisioningError):
    """The cloud-init template could not be read."""

    phase = "template-read"


class TemplateRenderError(ProvisioningError):
    """The rendered cloud-init document is not valid YAML."""

    phase = "template-render"


class UnresolvedPlaceholderError(TemplateRenderError):
    """Placeholder tokens remained in the rendered document."""

    def __init__(self, tokens, node_name: Optional[str] = None):
        self.tokens = sorted(set(tokens))
        super().__init__(f"unresolved placeholders: {', '.join(self.tokens)}", node_name=node_name)


class PlanValidationError(ProvisioningError):
    """The provisioning plan is not a valid dependency graph."""

    phase = "plan"


class ResourceDeclarationError(ProvisioningError):
    """A resource could not be declared or realised on the hypervisor."""

    phase = "declare"
