"""RDS MySQL instance behind the compute host's security group."""
import logging
from typing import Dict, Any, Optional

from botocore.exceptions import ClientError

from bike_deploy.errors import ConfigurationError
from bike_deploy.infrastructure.provisioner import ResourceHandler
from bike_deploy.models import ResourceDescriptor, ResourceKind
from bike_deploy.utils.aws_clients import get_rds_client

logger = logging.getLogger(__name__)


class DatabaseHandler(ResourceHandler):
    """Private, encrypted MySQL instance with its subnet group.

    The master password is held by the handler rather than the descriptor so
    it never ends up in the state ledger.
    """

    kind = ResourceKind.DATABASE

    def __init__(self, rds_client=None, master_password: Optional[str] = None,
                 project: str = "bike-inventory", wait: bool = True):
        self.rds = rds_client or get_rds_client()
        self.master_password = master_password
        self.project = project
        self.wait = wait

    def find(self, descriptor: ResourceDescriptor) -> Optional[Dict[str, Any]]:
        try:
            response = self.rds.describe_db_instances(DBInstanceIdentifier=descriptor.name)
        except ClientError as e:
            if e.response['Error']['Code'] == 'DBInstanceNotFound':
                return None
            raise
        return self._outputs(response['DBInstances'][0])

    def create(self, descriptor: ResourceDescriptor) -> Dict[str, Any]:
        if not self.master_password:
            raise ConfigurationError("DB_PASSWORD must be set to create the database")
        props = descriptor.properties

        self._ensure_subnet_group(props['subnet_group_name'], props['subnet_ids'])

        self.rds.create_db_instance(
            DBInstanceIdentifier=descriptor.name,
            DBInstanceClass=props.get('instance_class', 'db.t3.micro'),
            Engine='mysql',
            EngineVersion=props.get('engine_version', '8.0'),
            MasterUsername=props.get('username', 'admin'),
            MasterUserPassword=self.master_password,
            AllocatedStorage=props.get('allocated_storage', 20),
            DBName=props['db_name'],
            VpcSecurityGroupIds=[props['security_group_id']],
            DBSubnetGroupName=props['subnet_group_name'],
            BackupRetentionPeriod=props.get('backup_retention_days', 7),
            StorageEncrypted=True,
            MultiAZ=False,
            PubliclyAccessible=False,
            AutoMinorVersionUpgrade=True,
            Tags=[
                {'Key': 'Name', 'Value': 'BikeInventoryDatabase'},
                {'Key': 'Project', 'Value': self.project}
            ]
        )
        logger.info(f"🗄️ RDS instance requested: {descriptor.name}")

        if self.wait:
            logger.info("⏳ Waiting for RDS instance to become available...")
            self.rds.get_waiter('db_instance_available').wait(DBInstanceIdentifier=descriptor.name)

        response = self.rds.describe_db_instances(DBInstanceIdentifier=descriptor.name)
        return self._outputs(response['DBInstances'][0])

    def _ensure_subnet_group(self, name: str, subnet_ids) -> None:
        try:
            self.rds.create_db_subnet_group(
                DBSubnetGroupName=name,
                DBSubnetGroupDescription="Subnet group for Bike Inventory DB",
                SubnetIds=list(subnet_ids),
            )
            logger.info(f"📡 Created DB subnet group: {name}")
        except ClientError as e:
            if e.response['Error']['Code'] != 'DBSubnetGroupAlreadyExists':
                raise
            logger.info(f"DB subnet group {name} already exists")

    @staticmethod
    def _outputs(instance: Dict[str, Any]) -> Dict[str, Any]:
        endpoint = instance.get('Endpoint') or {}
        return {
            'identifier': instance['DBInstanceIdentifier'],
            'status': instance.get('DBInstanceStatus'),
            'endpoint': endpoint.get('Address'),
            'port': endpoint.get('Port'),
            'db_name': instance.get('DBName'),
            'username': instance.get('MasterUsername'),
            'storage_encrypted': instance.get('StorageEncrypted'),
        }


def database_descriptor(settings, security_group_id: str, subnet_ids) -> ResourceDescriptor:
    return ResourceDescriptor(
        kind=ResourceKind.DATABASE,
        name=settings.db_instance_identifier,
        region=settings.aws_region,
        properties={
            'security_group_id': security_group_id,
            'subnet_ids': list(subnet_ids),
            'subnet_group_name': settings.db_subnet_group_name,
            'db_name': settings.db_name,
            'username': settings.db_username,
            'instance_class': settings.db_instance_class,
            'engine_version': settings.db_engine_version,
            'allocated_storage': settings.db_allocated_storage,
            'backup_retention_days': settings.db_backup_retention_days,
        },
    )
