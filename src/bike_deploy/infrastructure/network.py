"""Security groups (network perimeter) in the default VPC."""
import logging
from typing import Dict, Any, List, Optional

from botocore.exceptions import ClientError

from bike_deploy.infrastructure.provisioner import ResourceHandler
from bike_deploy.models import ResourceDescriptor, ResourceKind
from bike_deploy.utils.aws_clients import get_ec2_client

logger = logging.getLogger(__name__)


def get_default_vpc_id(ec2_client) -> str:
    response = ec2_client.describe_vpcs(Filters=[{'Name': 'isDefault', 'Values': ['true']}])
    if not response['Vpcs']:
        raise ValueError("No default VPC found in this region")
    return response['Vpcs'][0]['VpcId']


def get_default_subnet_ids(ec2_client, vpc_id: str, count: int = 2) -> List[str]:
    """First subnets of the VPC, ordered by availability zone."""
    response = ec2_client.describe_subnets(Filters=[{'Name': 'vpc-id', 'Values': [vpc_id]}])
    subnets = sorted(response['Subnets'], key=lambda s: s['AvailabilityZone'])
    return [s['SubnetId'] for s in subnets[:count]]


class SecurityGroupHandler(ResourceHandler):
    """Creates a security group and its ingress rules.

    ``properties['ingress']`` holds one dict per rule with a ``port`` and either
    a ``cidr`` or a ``source_group_id``. Rules are only applied at creation;
    an existing group is never modified.
    """

    kind = ResourceKind.SECURITY_GROUP

    def __init__(self, ec2_client=None, project: str = "bike-inventory"):
        self.ec2 = ec2_client or get_ec2_client()
        self.project = project

    def find(self, descriptor: ResourceDescriptor) -> Optional[Dict[str, Any]]:
        filters = [{'Name': 'group-name', 'Values': [descriptor.name]}]
        vpc_id = descriptor.properties.get('vpc_id')
        if vpc_id:
            filters.append({'Name': 'vpc-id', 'Values': [vpc_id]})

        response = self.ec2.describe_security_groups(Filters=filters)
        if not response['SecurityGroups']:
            return None
        group = response['SecurityGroups'][0]
        return {
            'group_id': group['GroupId'],
            'group_name': group['GroupName'],
            'vpc_id': group.get('VpcId'),
        }

    def create(self, descriptor: ResourceDescriptor) -> Dict[str, Any]:
        vpc_id = descriptor.properties.get('vpc_id') or get_default_vpc_id(self.ec2)
        response = self.ec2.create_security_group(
            GroupName=descriptor.name,
            Description=descriptor.properties.get('description', f"Security group for {self.project}"),
            VpcId=vpc_id,
            TagSpecifications=[{
                'ResourceType': 'security-group',
                'Tags': [
                    {'Key': 'Name', 'Value': descriptor.name},
                    {'Key': 'Project', 'Value': self.project}
                ]
            }]
        )
        group_id = response['GroupId']

        permissions = [self._permission(rule) for rule in descriptor.properties.get('ingress', [])]
        if permissions:
            try:
                self.ec2.authorize_security_group_ingress(GroupId=group_id, IpPermissions=permissions)
            except ClientError as e:
                if e.response['Error']['Code'] != 'InvalidPermission.Duplicate':
                    raise
            logger.info(f"Authorized ingress on {group_id}: ports "
                        f"{', '.join(str(p['FromPort']) for p in permissions)}")

        return {'group_id': group_id, 'group_name': descriptor.name, 'vpc_id': vpc_id}

    @staticmethod
    def _permission(rule: Dict[str, Any]) -> Dict[str, Any]:
        permission = {
            'IpProtocol': rule.get('protocol', 'tcp'),
            'FromPort': rule['port'],
            'ToPort': rule['port'],
        }
        if rule.get('source_group_id'):
            permission['UserIdGroupPairs'] = [{'GroupId': rule['source_group_id']}]
        else:
            permission['IpRanges'] = [{'CidrIp': rule.get('cidr', '0.0.0.0/0')}]
        return permission


def app_security_group_descriptor(settings) -> ResourceDescriptor:
    """Compute perimeter: SSH, HTTP and HTTPS from anywhere."""
    return ResourceDescriptor(
        kind=ResourceKind.SECURITY_GROUP,
        name=settings.security_group_name,
        region=settings.aws_region,
        properties={
            'description': "Security group for Bike Inventory Application",
            'ingress': [{'port': port, 'cidr': '0.0.0.0/0'} for port in settings.ingress_port_list],
        },
    )


def database_security_group_descriptor(settings, app_group_id: str) -> ResourceDescriptor:
    """Database perimeter: database port open to the compute group only."""
    return ResourceDescriptor(
        kind=ResourceKind.SECURITY_GROUP,
        name=settings.db_security_group_name,
        region=settings.aws_region,
        properties={
            'description': "Security group for Bike Inventory DB",
            'ingress': [{'port': settings.db_port, 'source_group_id': app_group_id}],
        },
    )
