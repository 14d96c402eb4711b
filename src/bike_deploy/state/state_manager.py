"""
Deployment state ledger.

Records what the provisioner found or created, which artifact is running on
each deployment target, and how the last pipeline run ended. The cloud stays
the source of truth; this file is what operators and CI read back.
"""

import json
import logging
import os
from datetime import datetime, timezone
from typing import Dict, Any, Optional

from bike_deploy.models import ArtifactReference, ResourceDescriptor

logger = logging.getLogger(__name__)


class StateManager:
    """Manages the local deployment ledger."""

    def __init__(self, state_file: str = ".deployment_state.json"):
        self.state_file = state_file
        self.state = self._load_state()

    def _load_state(self) -> Dict[str, Any]:
        """Load deployment state from file."""
        if os.path.exists(self.state_file):
            try:
                with open(self.state_file, 'r') as f:
                    return json.load(f)
            except (json.JSONDecodeError, IOError) as e:
                logger.warning(f"Ignoring unreadable state file {self.state_file}: {e}")

        return {
            "created_at": None,
            "last_updated": None,
            "resources": {},
            "targets": {},
            "last_run": None,
            "status": "not_deployed"
        }

    def save_state(self):
        """Save current state to file."""
        now = datetime.now(timezone.utc).isoformat()
        self.state["last_updated"] = now
        if not self.state.get("created_at"):
            self.state["created_at"] = now

        try:
            with open(self.state_file, 'w') as f:
                json.dump(self.state, f, indent=2)
        except IOError as e:
            logger.warning(f"Could not save state file: {e}")

    def record_resource(self, descriptor: ResourceDescriptor):
        """Record a provisioned resource under its kind/name/region key."""
        self.state.setdefault("resources", {})[descriptor.key] = {
            "kind": descriptor.identity[0],
            "name": descriptor.name,
            "region": descriptor.region,
            "status": descriptor.status.value,
            "outputs": descriptor.outputs,
            "recorded_at": datetime.now(timezone.utc).isoformat()
        }
        self.save_state()

    def get_resource(self, kind: str, name: str, region: str) -> Optional[Dict[str, Any]]:
        """Get information about a recorded resource."""
        return self.state.get("resources", {}).get(f"{kind}/{name}/{region}")

    def find_resource_outputs(self, kind: str) -> Dict[str, Any]:
        """Outputs of the most recently recorded resource of a kind."""
        matches = [r for r in self.state.get("resources", {}).values() if r["kind"] == kind]
        if not matches:
            return {}
        latest = max(matches, key=lambda r: r.get("recorded_at") or "")
        return latest.get("outputs", {})

    def list_resources(self, kind: Optional[str] = None) -> Dict[str, Any]:
        """List all recorded resources, optionally filtered by kind."""
        resources = self.state.get("resources", {})
        if kind:
            return {k: v for k, v in resources.items() if v["kind"] == kind}
        return resources

    def record_deployment(self, host: str, artifact: ArtifactReference):
        """Remember which artifact is now running on a host."""
        self.state.setdefault("targets", {})[host] = {
            "artifact": artifact.to_dict(),
            "deployed_at": datetime.now(timezone.utc).isoformat()
        }
        self.save_state()

    def running_artifact(self, host: str) -> Optional[ArtifactReference]:
        entry = self.state.get("targets", {}).get(host)
        if not entry:
            return None
        return ArtifactReference.from_dict(entry["artifact"])

    def record_run(self, revision: Optional[str], status: str,
                   failed_stage: Optional[str] = None, error: Optional[str] = None):
        """Record how the latest pipeline run ended."""
        self.state["last_run"] = {
            "revision": revision,
            "status": status,
            "failed_stage": failed_stage,
            "error": error,
            "finished_at": datetime.now(timezone.utc).isoformat()
        }
        self.state["status"] = "deployed" if status == "succeeded" else status
        self.save_state()

    def clear_state(self):
        """Clear all deployment state."""
        if os.path.exists(self.state_file):
            os.remove(self.state_file)
        self.state = self._load_state()

    def export_env_file(self, env_file: str = ".env.aws-prod") -> str:
        """Export recorded outputs as the values CI needs."""
        instance = self.find_resource_outputs("instance")
        registry = self.find_resource_outputs("registry")
        database = self.find_resource_outputs("database")

        env_lines = [
            "# Bike inventory deployment values",
            f"# Generated on {datetime.now(timezone.utc).isoformat()}",
            "",
            "DEPLOYMENT_MODE=aws-prod",
        ]
        if instance.get("public_ip"):
            env_lines.append(f"EC2_HOSTNAME={instance['public_ip']}")
        if instance.get("instance_id"):
            env_lines.append(f"EC2_INSTANCE_ID={instance['instance_id']}")
        if registry.get("repository_uri"):
            env_lines.append(f"ECR_REPOSITORY_URI={registry['repository_uri']}")
        if database.get("endpoint"):
            env_lines.append(f"DB_HOST={database['endpoint']}")
        env_lines.append("")

        with open(env_file, 'w') as f:
            f.write('\n'.join(env_lines))
        logger.info(f"Configuration exported to {env_file}")
        return env_file
