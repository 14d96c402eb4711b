"""
Provisioning groups: infrastructure (network + compute), database, monitoring.

Each group is idempotent and independently re-runnable. Ordering inside a
group follows the resource dependencies: the compute perimeter exists
before the host, and the database perimeter references the compute
perimeter's group id rather than an address.
"""
import logging
from typing import Dict, Any, Optional

from bike_deploy.errors import ConfigurationError
from bike_deploy.infrastructure import ResourceProvisioner, default_handlers
from bike_deploy.infrastructure.compute import instance_descriptor
from bike_deploy.infrastructure.database import database_descriptor
from bike_deploy.infrastructure.identity import role_descriptor
from bike_deploy.infrastructure.network import (
    app_security_group_descriptor,
    database_security_group_descriptor,
    get_default_subnet_ids,
    get_default_vpc_id,
)
from bike_deploy.infrastructure.registry import registry_descriptor
from bike_deploy.infrastructure.ssh_key_manager import get_ssh_connection_command, keypair_descriptor
from bike_deploy.monitoring.configurator import MonitoringConfigurator, print_monitoring_summary
from bike_deploy.utils.aws_clients import get_ec2_client
from bike_deploy.utils.decorators import log_operation

logger = logging.getLogger(__name__)


def build_provisioner(settings, state_manager=None, wait: bool = True) -> ResourceProvisioner:
    return ResourceProvisioner(default_handlers(settings, wait=wait), state_manager=state_manager)


@log_operation("Infrastructure setup", logger_name=__name__)
def setup_infrastructure(settings, provisioner: ResourceProvisioner) -> Dict[str, Any]:
    """Registry, key pair, compute perimeter, role and compute host."""
    registry = provisioner.ensure(registry_descriptor(settings))
    keypair = provisioner.ensure(keypair_descriptor(settings))
    security_group = provisioner.ensure(app_security_group_descriptor(settings))
    role = provisioner.ensure(role_descriptor(settings))
    instance = provisioner.ensure(instance_descriptor(
        settings,
        key_name=keypair.outputs['key_name'],
        security_group_id=security_group.outputs['group_id'],
        instance_profile=role.outputs['instance_profile'],
    ))
    return {
        'registry': registry,
        'keypair': keypair,
        'security_group': security_group,
        'role': role,
        'instance': instance,
    }


@log_operation("Database setup", logger_name=__name__)
def setup_database(settings, provisioner: ResourceProvisioner, ec2_client=None) -> Dict[str, Any]:
    """Database perimeter, subnet group and the database itself."""
    if not settings.db_password:
        raise ConfigurationError("DB_PASSWORD must be set before provisioning the database")

    ec2 = ec2_client or get_ec2_client()
    app_group = provisioner.ensure(app_security_group_descriptor(settings))
    db_group = provisioner.ensure(
        database_security_group_descriptor(settings, app_group.outputs['group_id'])
    )
    vpc_id = db_group.outputs.get('vpc_id') or get_default_vpc_id(ec2)
    subnet_ids = get_default_subnet_ids(ec2, vpc_id)
    if len(subnet_ids) < 2:
        raise ConfigurationError(f"VPC {vpc_id} needs at least two subnets for a DB subnet group")

    database = provisioner.ensure(database_descriptor(settings, db_group.outputs['group_id'], subnet_ids))
    return {'security_group': db_group, 'database': database}


def setup_monitoring(settings, instance_id: str, state_manager=None) -> Dict[str, Any]:
    return MonitoringConfigurator(settings, state_manager=state_manager).ensure_monitoring(instance_id)


def complete_setup(settings, provisioner: ResourceProvisioner, state_manager=None,
                   instance_id: Optional[str] = None, prompt=None) -> Dict[str, Any]:
    """Infrastructure, then database, then monitoring bound to the new host.

    ``prompt`` is asked for an instance id only when infrastructure setup did
    not produce one.
    """
    infrastructure = setup_infrastructure(settings, provisioner)
    print_infrastructure_summary(settings, infrastructure)
    database = setup_database(settings, provisioner)
    print_database_summary(settings, database)

    instance_id = instance_id or infrastructure['instance'].outputs.get('instance_id')
    if not instance_id and prompt is not None:
        instance_id = prompt("Enter your EC2 Instance ID")
    monitoring = setup_monitoring(settings, instance_id, state_manager=state_manager)
    print_monitoring_summary(monitoring)
    return {'infrastructure': infrastructure, 'database': database, 'monitoring': monitoring}


def print_infrastructure_summary(settings, result: Dict[str, Any]) -> None:
    instance = result['instance'].outputs
    keypair = result['keypair'].outputs
    public_ip = instance.get('public_ip') or 'pending'
    print("")
    print("🎉 Infrastructure setup complete!")
    print("")
    print("📋 Summary:")
    print(f"  ECR Repository:  {result['registry'].outputs.get('repository_uri')}")
    print(f"  EC2 Instance ID: {instance.get('instance_id')}")
    print(f"  Public IP:       {public_ip}")
    print(f"  Security Group:  {result['security_group'].outputs.get('group_id')}")
    print(f"  Key Pair:        {keypair.get('private_key_path') or keypair.get('key_name')}")
    if keypair.get('private_key_path') and instance.get('public_ip'):
        print(f"  SSH:             {get_ssh_connection_command(keypair['private_key_path'], public_ip, settings.ec2_user)}")
    print("")
    print("🔧 Next Steps:")
    print("1. Add the CI secrets listed by `bike-deploy secrets-template`")
    print(f"   - EC2_HOSTNAME: {public_ip}")
    print(f"   - EC2_USER: {settings.ec2_user}")
    print("2. Provision the database: `bike-deploy provision database`")
    print(f"3. Push to the {settings.deploy_branch} branch to trigger deployment")


def print_database_summary(settings, result: Dict[str, Any]) -> None:
    database = result['database'].outputs
    print("")
    print("🎉 RDS setup complete!")
    print("📋 Database Details:")
    print(f"  DB Identifier : {database.get('identifier')}")
    print(f"  Endpoint      : {database.get('endpoint') or 'pending'}")
    print(f"  DB Name       : {database.get('db_name')}")
    print(f"  Username      : {database.get('username')}")
    print(f"  Security Group: {result['security_group'].outputs.get('group_id')}")
    print("")
    print("🔧 Next Steps:")
    print("1. Update CI secrets with:")
    print(f"   - DB_HOST={database.get('endpoint') or '<endpoint>'}")
    print(f"   - DB_USER={database.get('username')}")
    print("   - DB_PASSWORD=<the password you provisioned with>")
    print(f"   - DB_NAME={database.get('db_name')}")
    print("2. The DB is private and only accessible from the compute host.")
