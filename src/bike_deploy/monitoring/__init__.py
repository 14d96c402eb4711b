from bike_deploy.monitoring.health import HealthVerifier
from bike_deploy.monitoring.configurator import MonitoringConfigurator, default_alarm_rules

__all__ = ["HealthVerifier", "MonitoringConfigurator", "default_alarm_rules"]
