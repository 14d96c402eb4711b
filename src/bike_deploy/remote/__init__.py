from bike_deploy.remote.executor import RemoteExecutor, SSHRemoteExecutor
from bike_deploy.remote.deployer import DeployResult, RemoteDeployer, ssh_executor_factory

__all__ = ["RemoteExecutor", "SSHRemoteExecutor", "DeployResult", "RemoteDeployer", "ssh_executor_factory"]
