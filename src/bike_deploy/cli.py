# cli.py
import json
import logging
import shutil
import sys

import click

from bike_deploy.config.settings import get_settings
from bike_deploy.errors import DeploymentError
from bike_deploy.models import ArtifactReference, DeploymentTarget, PipelineStage
from bike_deploy.state.state_manager import StateManager

logger = logging.getLogger(__name__)

SECRETS_TEMPLATE = [
    ("AWS_ACCESS_KEY_ID", "AWS Access Key", "AWS Console"),
    ("AWS_SECRET_ACCESS_KEY", "AWS Secret Key", "AWS Console"),
    ("EC2_SSH_PRIVATE_KEY", "SSH Private Key", "Infrastructure output"),
    ("EC2_HOSTNAME", "EC2 Public IP", "Infrastructure output"),
    ("EC2_USER", "EC2 Username", "ec2-user"),
    ("DB_HOST", "RDS Endpoint", "Database output"),
    ("DB_USER", "Database Username", "Database output"),
    ("DB_PASSWORD", "Database Password", "Database output"),
    ("DB_NAME", "Database Name", "bike_inventory"),
    ("JWT_SECRET", "JWT Secret Key", "Generate secure key"),
    ("SESSION_SECRET", "Session Secret", "Generate secure key"),
]

MENU_OPTIONS = [
    "🏗️  Set up AWS Infrastructure (ECR, EC2, Security Groups)",
    "🗄️  Set up RDS Database",
    "📊 Set up Monitoring (CloudWatch, Alarms)",
    "🧪 Test Docker Build Locally",
    "🚀 Complete Setup (Infrastructure + Database + Monitoring)",
    "📋 Show CI Secrets Template",
    "❓ Show Help",
    "🚪 Exit",
]


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def _state(settings) -> StateManager:
    return StateManager(settings.state_file)


def _resolve_target(settings, state: StateManager, host=None) -> DeploymentTarget:
    instance = state.find_resource_outputs("instance")
    host = host or settings.ec2_hostname or instance.get('public_ip')
    if not host:
        raise click.UsageError("No deployment host: pass --host, set EC2_HOSTNAME or provision infrastructure")
    return DeploymentTarget.from_settings(settings, host=host, instance_id=instance.get('instance_id'))


def _fail(error: Exception) -> None:
    print(f"❌ {error}")
    sys.exit(1)


@click.group()
@click.option("--log-level", default=None, help="Override LOG_LEVEL")
def cli(log_level):
    """Provision, publish, deploy and verify the bike inventory service on AWS"""
    settings = get_settings()
    configure_logging(log_level or settings.log_level)
    settings.export_environment_variables()


@cli.command()
def check():
    """Check prerequisites (docker binary and AWS credentials)"""
    if not check_prerequisites():
        sys.exit(1)


def check_prerequisites() -> bool:
    ok = True
    if shutil.which("docker") is None:
        print("❌ Docker is not installed. Please install it first.")
        ok = False
    try:
        from bike_deploy.utils.aws_clients import get_sts_client
        identity = get_sts_client().get_caller_identity()
        print(f"✅ AWS credentials valid for account {identity['Account']}")
    except Exception as e:
        print(f"❌ AWS credentials are not configured: {e}")
        ok = False
    if ok:
        print("✅ All prerequisites met!")
    return ok


@cli.command()
def show_config():
    """Show current configuration"""
    settings = get_settings()

    print("Current Configuration:")
    print(f"  Deployment Mode: {settings.deployment_mode}")
    print(f"  AWS Region: {settings.aws_region}")
    print(f"  AWS Endpoint: {settings.aws_endpoint_url}")
    print(f"  ECR Repository: {settings.ecr_repo_name}")
    print(f"  Instance: {settings.instance_name} ({settings.instance_type})")
    print(f"  Database: {settings.db_instance_identifier} ({settings.db_instance_class})")
    print(f"  EC2 Host: {settings.ec2_hostname or 'not set'}")
    print(f"  Container: {settings.container_name} {settings.host_port}:{settings.container_port}")
    print(f"  Health: {settings.health_path} (timeout {settings.health_timeout:.0f}s, "
          f"interval {settings.health_interval:.0f}s)")
    print(f"  DB Password: {'set' if settings.db_password else 'not set'}")
    print(f"  State File: {settings.state_file}")


@cli.group()
def provision():
    """Idempotent provisioning of infrastructure, database and monitoring"""
    pass


@provision.command("infrastructure")
@click.option("--no-wait", is_flag=True, help="Do not wait for the instance to be running")
def provision_infrastructure(no_wait):
    """ECR repository, key pair, security group, IAM role and EC2 instance"""
    from bike_deploy.orchestration.setup import (
        build_provisioner, print_infrastructure_summary, setup_infrastructure
    )
    settings = get_settings()
    state = _state(settings)
    try:
        result = setup_infrastructure(settings, build_provisioner(settings, state, wait=not no_wait))
    except DeploymentError as e:
        _fail(e)
    print_infrastructure_summary(settings, result)


@provision.command("database")
@click.option("--no-wait", is_flag=True, help="Do not wait for the database to become available")
def provision_database(no_wait):
    """RDS MySQL instance reachable only from the compute host"""
    from bike_deploy.orchestration.setup import build_provisioner, print_database_summary, setup_database
    settings = get_settings()
    state = _state(settings)
    try:
        result = setup_database(settings, build_provisioner(settings, state, wait=not no_wait))
    except DeploymentError as e:
        _fail(e)
    print_database_summary(settings, result)


@provision.command("monitoring")
@click.option("--instance-id", default=None, help="EC2 instance id (defaults to the provisioned one)")
def provision_monitoring(instance_id):
    """Log group, SNS topic, alarms and dashboard for the compute host"""
    from bike_deploy.monitoring.configurator import print_monitoring_summary
    from bike_deploy.orchestration.setup import setup_monitoring
    settings = get_settings()
    state = _state(settings)
    instance_id = instance_id or state.find_resource_outputs("instance").get('instance_id')
    if not instance_id:
        instance_id = click.prompt("Enter your EC2 Instance ID")
    try:
        result = setup_monitoring(settings, instance_id, state_manager=state)
    except DeploymentError as e:
        _fail(e)
    print_monitoring_summary(result)


@provision.command("all")
@click.option("--instance-id", default=None, help="Bind monitoring to this instance instead")
def provision_all(instance_id):
    """Infrastructure, then database, then monitoring"""
    run_complete_setup(instance_id)


def run_complete_setup(instance_id=None):
    from bike_deploy.orchestration.setup import build_provisioner, complete_setup
    settings = get_settings()
    state = _state(settings)
    try:
        complete_setup(settings, build_provisioner(settings, state), state_manager=state,
                       instance_id=instance_id, prompt=click.prompt)
    except DeploymentError as e:
        _fail(e)
    print("✅ Complete setup finished!")


def _run_pipeline(stages, source, revision=None, host=None, artifact=None, require_target=True):
    from bike_deploy.orchestration.pipeline import DeploymentPipeline, print_pipeline_summary
    settings = get_settings()
    state = _state(settings)
    target = _resolve_target(settings, state, host) if require_target else None
    pipeline = DeploymentPipeline.from_settings(settings, state_manager=state, stages=stages)
    result = pipeline.run(
        source,
        target=target,
        revision=revision,
        stages=stages,
        environment=settings.runtime_environment(),
        artifact=artifact,
    )
    print_pipeline_summary(result)
    if not result.success:
        sys.exit(1)
    return result


@cli.command()
@click.option("--source", default=".", type=click.Path(exists=True, file_okay=False),
              help="Source tree with the Dockerfile")
@click.option("--revision", default=None, help="Release revision (defaults to git HEAD)")
def publish(source, revision):
    """Run the tests, then build and push the release image"""
    _run_pipeline((PipelineStage.TEST, PipelineStage.PUBLISH), source, revision,
                  require_target=False)


@cli.command()
@click.option("--tag", required=True, help="Published image tag to deploy")
@click.option("--host", default=None, help="Target host (defaults to EC2_HOSTNAME)")
@click.option("--verify/--no-verify", default=True, help="Wait for the health endpoint afterwards")
def deploy(tag, host, verify):
    """Deploy an already published tag to the compute host"""
    settings = get_settings()
    try:
        artifact = ArtifactReference(registry_uri=settings.ecr_repository_uri, tag=tag)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--tag")
    stages = (PipelineStage.DEPLOY, PipelineStage.VERIFY) if verify else (PipelineStage.DEPLOY,)
    _run_pipeline(stages, ".", tag, host=host, artifact=artifact)


@cli.command()
@click.option("--host", default=None, help="Target host (defaults to EC2_HOSTNAME)")
@click.option("--timeout", default=None, type=float, help="Health window in seconds")
def verify(host, timeout):
    """Poll the health endpoint until healthy or the window elapses"""
    from bike_deploy.monitoring.health import HealthVerifier
    settings = get_settings()
    target = _resolve_target(settings, _state(settings), host)
    verifier = HealthVerifier(request_timeout=settings.health_request_timeout,
                              expected_service=settings.expected_service)
    try:
        report = verifier.wait_healthy(target.health_url(settings.health_path),
                                       timeout=timeout or settings.health_timeout,
                                       interval=settings.health_interval)
    except DeploymentError as e:
        _fail(e)
    print(f"✅ {report.service} healthy at {report.timestamp}")


@cli.command()
@click.option("--source", default=".", type=click.Path(exists=True, file_okay=False))
@click.option("--revision", envvar="GITHUB_SHA", default=None, help="Release revision")
@click.option("--event", envvar="GITHUB_EVENT_NAME", default="push",
              type=click.Choice(["push", "pull_request"]), help="CI trigger event")
@click.option("--ref", envvar="GITHUB_REF", default=None, help="Git ref that triggered the run")
@click.option("--host", default=None, help="Target host (defaults to EC2_HOSTNAME)")
def pipeline(source, revision, event, ref, host):
    """Run the CI pipeline for a trigger: full release on the deploy branch, tests otherwise"""
    from bike_deploy.orchestration.triggers import resolve_stages
    settings = get_settings()
    if ref is None and event == "push":
        ref = settings.deploy_branch
    stages = resolve_stages(event, ref, settings.deploy_branch)
    print(f"Trigger {event} on {ref}: stages {', '.join(s.value for s in stages)}")
    _run_pipeline(stages, source, revision, host=host,
                  require_target=PipelineStage.DEPLOY in stages)


@cli.command("local-test")
@click.option("--source", default=".", type=click.Path(exists=True, file_okay=False))
def local_test(source):
    """Build the image, run it locally, poll health once and tear it down"""
    from bike_deploy.orchestration.local_test import LocalSmokeTest
    try:
        LocalSmokeTest(get_settings()).run(source)
    except DeploymentError as e:
        _fail(e)
    print("✅ Docker test completed!")


@cli.command("secrets-template")
def secrets_template():
    """Show the CI secrets the pipeline expects"""
    print_secrets_template()


def print_secrets_template() -> None:
    print("")
    print("📋 CI Secrets Configuration")
    print("===========================")
    print("")
    print("Add the following secrets to your CI provider:")
    print("")
    print(f"| {'Secret Name':<24} | {'Description':<20} | {'Get Value From':<21} |")
    print(f"|{'-' * 26}|{'-' * 22}|{'-' * 23}|")
    for name, description, source in SECRETS_TEMPLATE:
        print(f"| {name:<24} | {description:<20} | {source:<21} |")
    print("")
    print("💡 Tip: Generate a secure secret with:")
    print("   python -c \"import secrets; print(secrets.token_hex(64))\"")
    print("")


def print_help() -> None:
    print("")
    print("🆘 Help - Bike Inventory Deployment")
    print("===================================")
    print("")
    print("Prerequisites:")
    print("- AWS Account with appropriate permissions")
    print("- AWS credentials configured (environment or AWS_PROFILE)")
    print("- Docker installed")
    print("")
    print("Deployment Process:")
    print("1. Run option 5 (or `bike-deploy provision all`) for complete setup")
    print("2. Configure CI secrets (option 6)")
    print("3. Push code to the main branch")
    print("4. CI runs `bike-deploy pipeline` to test, publish, deploy and verify")
    print("")


@cli.command()
def menu():
    """Interactive setup menu"""
    print("🚴 Bike Inventory Application Deployment Tool")
    print("")
    if not check_prerequisites():
        sys.exit(1)

    actions = {
        1: lambda: provision_infrastructure.main(args=[], standalone_mode=False),
        2: lambda: provision_database.main(args=[], standalone_mode=False),
        3: lambda: provision_monitoring.main(args=[], standalone_mode=False),
        4: lambda: local_test.main(args=[], standalone_mode=False),
        5: run_complete_setup,
        6: print_secrets_template,
        7: print_help,
    }

    while True:
        print("")
        print("What would you like to do?")
        for number, label in enumerate(MENU_OPTIONS, start=1):
            print(f"{number}) {label}")
        print("")
        choice = click.prompt("Enter your choice (1-8)", type=int)

        if choice == 8:
            print("Goodbye! 👋")
            return
        action = actions.get(choice)
        if action is None:
            print("❌ Invalid option. Please choose 1-8.")
            continue
        try:
            action()
        except SystemExit as e:
            if e.code:
                print("❌ Step failed, see the log above")
        click.prompt("Press Enter to continue", default="", show_default=False)


@cli.group()
def state():
    """Inspect or reset the local deployment ledger"""
    pass


@state.command("status")
def state_status():
    """Print the recorded resources, running artifacts and last run"""
    manager = _state(get_settings())
    print(json.dumps(manager.state, indent=2, default=str))


@state.command("clear")
@click.confirmation_option(prompt="Clear the local deployment state? Cloud resources are not touched.")
def state_clear():
    """Delete the local ledger"""
    _state(get_settings()).clear_state()
    print("✅ State cleared")


@state.command("export-env")
@click.option("--env-file", default=".env.aws-prod", help="File to write")
def state_export_env(env_file):
    """Write recorded host, registry and database values as an env file"""
    path = _state(get_settings()).export_env_file(env_file)
    print(f"✅ Configuration exported to {path}")


if __name__ == "__main__":
    cli()
