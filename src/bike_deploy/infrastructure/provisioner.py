"""
Idempotent resource provisioning.

``ResourceProvisioner.ensure`` looks up a resource by its (kind, name, region)
identity and returns it untouched when found. Only a missing resource is
created. Re-running a partially failed setup therefore converges instead of
duplicating anything.
"""
import logging
from typing import Dict, Any, Iterable, Optional

from bike_deploy.errors import (
    AlreadyExistsError, DeploymentError, TransientInfraError, is_already_exists
)
from bike_deploy.models import ResourceDescriptor, ResourceKind, ResourceStatus

logger = logging.getLogger(__name__)


class ResourceHandler:
    """Probe/create pair for one resource kind."""

    kind: ResourceKind = None

    def find(self, descriptor: ResourceDescriptor) -> Optional[Dict[str, Any]]:
        """Return outputs of the live resource, or None when it does not exist."""
        raise NotImplementedError

    def create(self, descriptor: ResourceDescriptor) -> Dict[str, Any]:
        """Create the resource with its fixed configuration and return its outputs."""
        raise NotImplementedError


class ResourceProvisioner:
    """Reconciles resource descriptors against the live cloud account."""

    def __init__(self, handlers: Iterable[ResourceHandler] = (), state_manager=None):
        self._handlers: Dict[ResourceKind, ResourceHandler] = {}
        self.state_manager = state_manager
        for handler in handlers:
            self.register(handler)

    def register(self, handler: ResourceHandler) -> None:
        self._handlers[ResourceKind(handler.kind)] = handler

    def handler_for(self, kind: ResourceKind) -> ResourceHandler:
        try:
            return self._handlers[ResourceKind(kind)]
        except KeyError:
            raise ValueError(f"No handler registered for resource kind: {kind}")

    def ensure(self, descriptor: ResourceDescriptor) -> ResourceDescriptor:
        """Return the existing resource or create it.

        Raises:
            TransientInfraError: any cloud failure other than "already exists"
        """
        handler = self.handler_for(descriptor.kind)
        kind, name, region = descriptor.identity

        try:
            existing = handler.find(descriptor)
        except Exception as e:
            logger.error(f"❌ Probe failed for {kind} '{name}': {e}")
            raise TransientInfraError(descriptor.identity, e) from e

        if existing is not None:
            logger.info(f"✅ Reusing existing {kind}: {name}")
            return self._record(descriptor.resolved(ResourceStatus.EXISTS, existing))

        try:
            logger.info(f"Creating {kind}: {name}")
            outputs = handler.create(descriptor)
            status = ResourceStatus.CREATED
            logger.info(f"✅ Created {kind}: {name}")
        except AlreadyExistsError:
            logger.info(f"{kind} '{name}' already exists - nothing to do")
            outputs, status = self._lookup_after_conflict(handler, descriptor)
        except DeploymentError:
            raise
        except Exception as e:
            if not is_already_exists(e):
                logger.error(f"❌ Failed to create {kind} '{name}': {e}")
                raise TransientInfraError(descriptor.identity, e) from e

            logger.info(f"{kind} '{name}' already exists - nothing to do")
            outputs, status = self._lookup_after_conflict(handler, descriptor)

        return self._record(descriptor.resolved(status, outputs))

    def _lookup_after_conflict(self, handler: ResourceHandler, descriptor: ResourceDescriptor):
        try:
            outputs = handler.find(descriptor) or {}
        except Exception as e:
            raise TransientInfraError(descriptor.identity, e) from e
        return outputs, ResourceStatus.EXISTS

    def _record(self, descriptor: ResourceDescriptor) -> ResourceDescriptor:
        if self.state_manager is not None:
            self.state_manager.record_resource(descriptor)
        return descriptor
