from bike_deploy.infrastructure.provisioner import ResourceHandler, ResourceProvisioner
from bike_deploy.infrastructure.registry import RegistryHandler
from bike_deploy.infrastructure.ssh_key_manager import KeyPairHandler
from bike_deploy.infrastructure.network import SecurityGroupHandler
from bike_deploy.infrastructure.identity import RoleHandler
from bike_deploy.infrastructure.compute import InstanceHandler
from bike_deploy.infrastructure.database import DatabaseHandler


def default_handlers(settings, wait: bool = True):
    """Handlers for every infrastructure resource kind, wired from settings."""
    return [
        RegistryHandler(project=settings.app_name),
        KeyPairHandler(key_dir=settings.ssh_key_dir, project=settings.app_name),
        SecurityGroupHandler(project=settings.app_name),
        RoleHandler(project=settings.app_name),
        InstanceHandler(project=settings.app_name, wait=wait),
        DatabaseHandler(master_password=settings.db_password, project=settings.app_name,
                        wait=wait and settings.wait_for_database),
    ]


__all__ = [
    "ResourceHandler",
    "ResourceProvisioner",
    "RegistryHandler",
    "KeyPairHandler",
    "SecurityGroupHandler",
    "RoleHandler",
    "InstanceHandler",
    "DatabaseHandler",
    "default_handlers",
]
