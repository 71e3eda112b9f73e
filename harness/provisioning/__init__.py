"""Environment provisioning."""

from harness.provisioning.base import EnvironmentScope, Provisioner
from harness.provisioning.handle import EnvironmentHandle
from harness.provisioning.local import LocalProvisioner
from harness.provisioning.process import ServiceProcess

__all__ = [
    "EnvironmentHandle",
    "EnvironmentScope",
    "LocalProvisioner",
    "Provisioner",
    "ServiceProcess",
]
