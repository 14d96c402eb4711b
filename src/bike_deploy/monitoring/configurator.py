"""
CloudWatch monitoring for the compute host.

Log group and alert topic follow the provisioner's lookup-then-create
semantics. Alarms and the dashboard are declarative: ``put_metric_alarm`` and
``put_dashboard`` replace an existing definition with the same name, so
re-running converges on the latest parameters without duplicates.
"""
import json
import logging
from typing import Dict, Any, List, Optional

from botocore.exceptions import ClientError

from bike_deploy.errors import TransientInfraError
from bike_deploy.infrastructure.provisioner import ResourceHandler, ResourceProvisioner
from bike_deploy.models import AlarmRule, ResourceDescriptor, ResourceKind, ResourceStatus
from bike_deploy.utils.aws_clients import get_cloudwatch_client, get_logs_client, get_sns_client
from bike_deploy.utils.decorators import log_operation

logger = logging.getLogger(__name__)


class LogGroupHandler(ResourceHandler):
    """Log destination with a fixed retention window."""

    kind = ResourceKind.LOG_GROUP

    def __init__(self, logs_client=None):
        self.logs = logs_client or get_logs_client()

    def find(self, descriptor: ResourceDescriptor) -> Optional[Dict[str, Any]]:
        paginator = self.logs.get_paginator('describe_log_groups')
        for page in paginator.paginate(logGroupNamePrefix=descriptor.name):
            for group in page.get('logGroups', []):
                if group['logGroupName'] == descriptor.name:
                    return {
                        'log_group_name': group['logGroupName'],
                        'retention_days': group.get('retentionInDays'),
                        'arn': group.get('arn'),
                    }
        return None

    def create(self, descriptor: ResourceDescriptor) -> Dict[str, Any]:
        retention = descriptor.properties.get('retention_days', 30)
        self.logs.create_log_group(logGroupName=descriptor.name)
        self.logs.put_retention_policy(logGroupName=descriptor.name, retentionInDays=retention)
        logger.info(f"📝 Log group {descriptor.name} retains {retention} days")
        return self.find(descriptor) or {'log_group_name': descriptor.name, 'retention_days': retention}


class TopicHandler(ResourceHandler):
    """SNS notification channel for alarms."""

    kind = ResourceKind.TOPIC

    def __init__(self, sns_client=None, project: str = "bike-inventory"):
        self.sns = sns_client or get_sns_client()
        self.project = project

    def find(self, descriptor: ResourceDescriptor) -> Optional[Dict[str, Any]]:
        paginator = self.sns.get_paginator('list_topics')
        for page in paginator.paginate():
            for topic in page.get('Topics', []):
                if topic['TopicArn'].split(':')[-1] == descriptor.name:
                    return {'topic_arn': topic['TopicArn'], 'topic_name': descriptor.name}
        return None

    def create(self, descriptor: ResourceDescriptor) -> Dict[str, Any]:
        response = self.sns.create_topic(
            Name=descriptor.name,
            Tags=[{'Key': 'Project', 'Value': self.project}]
        )
        logger.info(f"🔔 SNS topic created: {response['TopicArn']}")
        return {'topic_arn': response['TopicArn'], 'topic_name': descriptor.name}


def default_alarm_rules(prefix: str, topic_arn: Optional[str]) -> List[AlarmRule]:
    """CPU, memory, disk and status-check alarms for one host."""
    return [
        AlarmRule(
            name=f"{prefix}-HighCPU",
            metric_name="CPUUtilization",
            namespace="AWS/EC2",
            statistic="Average",
            period=300,
            threshold=80,
            evaluation_periods=2,
            description="Alarm when CPU exceeds 80%",
            notification_target=topic_arn,
        ),
        AlarmRule(
            name=f"{prefix}-HighMemory",
            metric_name="MemoryUtilization",
            namespace="CWAgent",
            statistic="Average",
            period=300,
            threshold=85,
            evaluation_periods=2,
            description="Alarm when memory usage exceeds 85%",
            notification_target=topic_arn,
        ),
        AlarmRule(
            name=f"{prefix}-LowDiskSpace",
            metric_name="DiskSpaceUtilization",
            namespace="CWAgent",
            statistic="Average",
            period=300,
            threshold=90,
            evaluation_periods=1,
            description="Alarm when disk usage exceeds 90%",
            notification_target=topic_arn,
        ),
        AlarmRule(
            name=f"{prefix}-HealthCheck",
            metric_name="StatusCheckFailed",
            namespace="AWS/EC2",
            statistic="Maximum",
            period=60,
            threshold=0,
            evaluation_periods=2,
            description="Alarm when EC2 status check fails",
            notification_target=topic_arn,
        ),
    ]


def build_dashboard_body(instance_id: str, region: str, log_group_name: str) -> Dict[str, Any]:
    """CPU and memory graphs plus a tail of recent log lines."""
    return {
        "widgets": [
            {
                "type": "metric",
                "x": 0,
                "y": 0,
                "width": 12,
                "height": 6,
                "properties": {
                    "metrics": [["AWS/EC2", "CPUUtilization", "InstanceId", instance_id]],
                    "period": 300,
                    "stat": "Average",
                    "region": region,
                    "title": "EC2 Instance CPU Utilization"
                }
            },
            {
                "type": "metric",
                "x": 12,
                "y": 0,
                "width": 12,
                "height": 6,
                "properties": {
                    "metrics": [["CWAgent", "MemoryUtilization", "InstanceId", instance_id]],
                    "period": 300,
                    "stat": "Average",
                    "region": region,
                    "title": "Memory Utilization"
                }
            },
            {
                "type": "log",
                "x": 0,
                "y": 6,
                "width": 24,
                "height": 6,
                "properties": {
                    "query": (f"SOURCE '{log_group_name}'\n| fields @timestamp, @message\n"
                              "| sort @timestamp desc\n| limit 100"),
                    "region": region,
                    "title": "Application Logs"
                }
            }
        ]
    }


class MonitoringConfigurator:
    """Declares log retention, alerting and the dashboard for a host."""

    def __init__(self, settings, state_manager=None, logs_client=None, sns_client=None,
                 cloudwatch_client=None):
        self.settings = settings
        self.state_manager = state_manager
        self.cloudwatch = cloudwatch_client or get_cloudwatch_client()
        self.provisioner = ResourceProvisioner(
            [LogGroupHandler(logs_client), TopicHandler(sns_client, project=settings.app_name)],
            state_manager=state_manager,
        )

    def upsert_alarm(self, rule: AlarmRule, instance_id: str) -> ResourceDescriptor:
        """Create or replace one alarm bound to the host."""
        descriptor = ResourceDescriptor(kind=ResourceKind.ALARM, name=rule.name,
                                        region=self.settings.aws_region)
        params = {
            'AlarmName': rule.name,
            'AlarmDescription': rule.description,
            'MetricName': rule.metric_name,
            'Namespace': rule.namespace,
            'Statistic': rule.statistic,
            'Period': rule.period,
            'Threshold': float(rule.threshold),
            'ComparisonOperator': rule.comparison,
            'EvaluationPeriods': rule.evaluation_periods,
            'Dimensions': [{'Name': 'InstanceId', 'Value': instance_id}],
        }
        if rule.notification_target:
            params['AlarmActions'] = [rule.notification_target]

        try:
            existing = self.cloudwatch.describe_alarms(AlarmNames=[rule.name])['MetricAlarms']
            self.cloudwatch.put_metric_alarm(**params)
        except ClientError as e:
            raise TransientInfraError(descriptor.identity, e) from e

        status = ResourceStatus.EXISTS if existing else ResourceStatus.CREATED
        resolved = descriptor.resolved(status, {
            'alarm_name': rule.name,
            'metric_name': rule.metric_name,
            'threshold': rule.threshold,
            'instance_id': instance_id,
        })
        logger.info(f"⚠️  Alarm {'updated' if existing else 'created'}: {rule.name}")
        return self._record(resolved)

    def upsert_dashboard(self, instance_id: str) -> ResourceDescriptor:
        descriptor = ResourceDescriptor(kind=ResourceKind.DASHBOARD, name=self.settings.dashboard_name,
                                        region=self.settings.aws_region)
        body = build_dashboard_body(instance_id, self.settings.aws_region, self.settings.log_group_name)
        try:
            self.cloudwatch.put_dashboard(DashboardName=descriptor.name, DashboardBody=json.dumps(body))
        except ClientError as e:
            raise TransientInfraError(descriptor.identity, e) from e
        logger.info(f"📈 Dashboard ready: {descriptor.name}")
        return self._record(descriptor.resolved(ResourceStatus.CREATED, {
            'dashboard_name': descriptor.name,
            'instance_id': instance_id,
        }))

    @log_operation("Monitoring setup", logger_name=__name__)
    def ensure_monitoring(self, instance_id: str) -> Dict[str, Any]:
        """Log group, topic, the four host alarms and the dashboard."""
        if not instance_id:
            raise ValueError("An instance id is required to bind alarms and the dashboard")
        logger.info(f"📊 Setting up CloudWatch monitoring for instance: {instance_id}")
        region = self.settings.aws_region

        log_group = self.provisioner.ensure(ResourceDescriptor(
            kind=ResourceKind.LOG_GROUP,
            name=self.settings.log_group_name,
            region=region,
            properties={'retention_days': self.settings.log_retention_days},
        ))
        topic = self.provisioner.ensure(ResourceDescriptor(
            kind=ResourceKind.TOPIC,
            name=self.settings.alert_topic_name,
            region=region,
        ))
        topic_arn = topic.outputs.get('topic_arn')

        alarms = [self.upsert_alarm(rule, instance_id)
                  for rule in default_alarm_rules(self.settings.alarm_prefix, topic_arn)]
        dashboard = self.upsert_dashboard(instance_id)

        return {
            'instance_id': instance_id,
            'log_group': log_group,
            'topic': topic,
            'alarms': alarms,
            'dashboard': dashboard,
        }

    def _record(self, descriptor: ResourceDescriptor) -> ResourceDescriptor:
        if self.state_manager is not None:
            self.state_manager.record_resource(descriptor)
        return descriptor


def print_monitoring_summary(result: Dict[str, Any]) -> None:
    topic_arn = result['topic'].outputs.get('topic_arn')
    print("")
    print("🎉 Monitoring setup complete!")
    print("")
    print("📋 Summary:")
    print(f"  Log Group:     {result['log_group'].name}")
    print(f"  SNS Topic:     {topic_arn}")
    print(f"  Alarms:        {', '.join(a.name for a in result['alarms'])}")
    print(f"  Dashboard:     {result['dashboard'].name}")
    print("")
    print("🔧 Next Steps:")
    print("1. Subscribe to SNS topic for email alerts:")
    print(f"   aws sns subscribe --topic-arn {topic_arn} --protocol email "
          "--notification-endpoint your-email@example.com")
    print("2. Install the CloudWatch Agent on the instance for memory and disk metrics.")
