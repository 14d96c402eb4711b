from bike_deploy.orchestration.pipeline import DeploymentPipeline
from bike_deploy.orchestration.triggers import resolve_stages

__all__ = ["DeploymentPipeline", "resolve_stages"]
