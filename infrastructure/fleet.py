# ============================================================================
# FLEET INFRASTRUCTURE
# ============================================================================
# EPOCH: 1 - ELASTIC FAN-OUT
# STATUS: Infrastructure - Azure Virtual Machines
# PURPOSE: FleetProvisioner adapter for role-tagged worker and manager VMs
# CREATED: 19 OCT 2026
# ============================================================================
"""
Fleet Infrastructure

FleetProvisioner implementation on Azure Virtual Machines.

- Role is a VM tag ({role_tag_key}: Manager|Worker)
- Lifecycle state comes from the VM instance view power state
- Launch submits the create request and returns without waiting for
  the VM to boot (the VM is reported as pending until it runs)
- Terminate deletes the VM together with its OS disk and NIC
- Self identity comes from the Azure Instance Metadata Service

Power state mapping:
    ProvisioningState/creating, PowerState/starting  -> pending
    PowerState/running                                -> running
    PowerState/stopping, PowerState/deallocating      -> stopping
    PowerState/stopped, PowerState/deallocated        -> stopped
    ProvisioningState/failed/*                        -> stopped
    ProvisioningState/deleting                        -> terminated
"""

import asyncio
import base64
import logging
import uuid
from typing import Dict, Iterable, List, Optional

import httpx
from azure.core.exceptions import (
    HttpResponseError,
    ResourceNotFoundError,
    ServiceRequestError,
)
from azure.identity.aio import DefaultAzureCredential
from azure.mgmt.compute.aio import ComputeManagementClient

from core.config import FleetDefaults
from core.contracts import InstanceState
from infrastructure.base import (
    BaseAdapter,
    FleetProvisioner,
    Instance,
    InfrastructureError,
    ProvisioningError,
    TransientServiceError,
)

logger = logging.getLogger(__name__)


_POWER_STATES: Dict[str, InstanceState] = {
    "starting": InstanceState.PENDING,
    "running": InstanceState.RUNNING,
    "stopping": InstanceState.STOPPING,
    "deallocating": InstanceState.STOPPING,
    "stopped": InstanceState.STOPPED,
    "deallocated": InstanceState.STOPPED,
}


def state_from_statuses(codes: Iterable[str]) -> InstanceState:
    """Normalize instance view status codes to an InstanceState."""
    codes = [code.lower() for code in codes if code]
    if "provisioningstate/deleting" in codes:
        return InstanceState.TERMINATED
    # Azure keeps VMs whose provisioning failed; they never run
    if any(code.startswith("provisioningstate/failed") for code in codes):
        return InstanceState.STOPPED
    for code in codes:
        if code.startswith("powerstate/"):
            return _POWER_STATES.get(code.split("/", 1)[1], InstanceState.PENDING)
    # No power state yet: the VM is still being created
    return InstanceState.PENDING


# ============================================================================
# AZURE FLEET PROVISIONER
# ============================================================================

class AzureFleetProvisioner(BaseAdapter, FleetProvisioner):
    """
    Azure VM fleet provisioner.

    Usage:
        fleet = AzureFleetProvisioner(FleetDefaults.from_env())
        active = await fleet.count_active("Worker")
        await fleet.launch_instances("Worker", 3)
    """

    def __init__(self, settings: Optional[FleetDefaults] = None):
        super().__init__()
        self.settings = settings or FleetDefaults.from_env()
        if not self.settings.subscription_id or not self.settings.resource_group:
            raise ValueError(
                "AZURE_SUBSCRIPTION_ID and AZURE_RESOURCE_GROUP must be set for fleet provisioning"
            )

        self._credential = None
        self._client: Optional[ComputeManagementClient] = None

    def _classify(self, error: Exception) -> type:
        if isinstance(error, ServiceRequestError):
            return TransientServiceError
        if isinstance(error, HttpResponseError) and error.status_code in (429, 500, 502, 503, 504):
            return TransientServiceError
        return ProvisioningError

    def _get_client(self) -> ComputeManagementClient:
        if self._client is None:
            self._credential = DefaultAzureCredential()
            self._client = ComputeManagementClient(self._credential, self.settings.subscription_id)
            logger.debug(f"ComputeManagementClient initialized for {self.settings.resource_group}")
        return self._client

    # ========================================================================
    # INVENTORY
    # ========================================================================

    async def _instance_state(self, vm_name: str) -> InstanceState:
        try:
            view = await self._get_client().virtual_machines.instance_view(
                self.settings.resource_group, vm_name
            )
        except ResourceNotFoundError:
            return InstanceState.TERMINATED
        return state_from_statuses(status.code for status in (view.statuses or []))

    async def list_instances(
        self,
        role: str,
        states: Optional[Iterable[InstanceState]] = None,
    ) -> List[Instance]:
        wanted = set(states) if states is not None else None
        tag_key = self.settings.role_tag_key

        with self._error_context("list instances", role):
            tagged = []
            async for vm in self._get_client().virtual_machines.list(self.settings.resource_group):
                tags = dict(vm.tags or {})
                if tags.get(tag_key) == role:
                    tagged.append((vm.name, tags))

            vm_states = await asyncio.gather(
                *(self._instance_state(name) for name, _ in tagged)
            )

        instances = [
            Instance(instance_id=name, role=role, state=state, tags=tags)
            for (name, tags), state in zip(tagged, vm_states)
        ]
        if wanted is not None:
            instances = [instance for instance in instances if instance.state in wanted]
        return instances

    # ========================================================================
    # LAUNCH / TERMINATE
    # ========================================================================

    def _vm_parameters(self, vm_name: str, role: str) -> dict:
        settings = self.settings
        template = settings.template_for(role)

        os_profile = {
            "computer_name": vm_name,
            "admin_username": settings.admin_username,
            "linux_configuration": {
                "disable_password_authentication": True,
                "ssh": {
                    "public_keys": [{
                        "path": f"/home/{settings.admin_username}/.ssh/authorized_keys",
                        "key_data": settings.ssh_public_key,
                    }],
                },
            },
        }
        if template.custom_data:
            os_profile["custom_data"] = base64.b64encode(
                template.custom_data.encode("utf-8")
            ).decode("ascii")

        parameters = {
            "location": settings.location,
            "tags": {settings.role_tag_key: role},
            "hardware_profile": {"vm_size": template.vm_size},
            "storage_profile": {
                "image_reference": {
                    "publisher": template.image_publisher,
                    "offer": template.image_offer,
                    "sku": template.image_sku,
                    "version": template.image_version,
                },
                "os_disk": {"create_option": "FromImage", "delete_option": "Delete"},
            },
            "os_profile": os_profile,
            "network_profile": {
                "network_api_version": "2020-11-01",
                "network_interface_configurations": [{
                    "name": f"{vm_name}-nic",
                    "primary": True,
                    "delete_option": "Delete",
                    "ip_configurations": [{
                        "name": f"{vm_name}-ipconfig",
                        "subnet": {"id": settings.subnet_id},
                    }],
                }],
            },
        }
        if settings.managed_identity_id:
            parameters["identity"] = {
                "type": "UserAssigned",
                "user_assigned_identities": {settings.managed_identity_id: {}},
            }
        return parameters

    async def _launch_one(self, role: str) -> str:
        vm_name = f"{role.lower()}-{uuid.uuid4().hex[:10]}"
        # Submitting the create is enough; the VM shows up as pending
        await self._get_client().virtual_machines.begin_create_or_update(
            self.settings.resource_group,
            vm_name,
            self._vm_parameters(vm_name, role),
        )
        logger.info(f"Launch submitted: {vm_name} ({role})")
        return vm_name

    async def launch_instances(self, role: str, count: int) -> List[str]:
        if count <= 0:
            return []

        results = await asyncio.gather(
            *(self._launch_one(role) for _ in range(count)),
            return_exceptions=True,
        )
        launched = [r for r in results if isinstance(r, str)]
        failures = [r for r in results if isinstance(r, BaseException)]

        if failures:
            for failure in failures:
                logger.error(f"Launch of {role} instance failed: {failure}")
            raise ProvisioningError(
                f"{len(failures)} of {count} {role} launches failed "
                f"(launched: {launched})",
                operation="launch instances",
                entity_id=role,
            )
        return launched

    async def terminate_instances(self, instance_ids: Iterable[str]) -> None:
        instance_ids = list(instance_ids)
        if not instance_ids:
            return

        async def _delete(vm_name: str) -> None:
            try:
                await self._get_client().virtual_machines.begin_delete(
                    self.settings.resource_group, vm_name
                )
                logger.info(f"Delete submitted: {vm_name}")
            except ResourceNotFoundError:
                logger.debug(f"Instance already gone: {vm_name}")

        with self._error_context("terminate instances", ",".join(instance_ids)):
            await asyncio.gather(*(_delete(vm_name) for vm_name in instance_ids))

    # ========================================================================
    # SELF IDENTITY
    # ========================================================================

    async def self_instance_id(self) -> str:
        """Resolve this VM's name from the instance metadata service."""
        try:
            async with httpx.AsyncClient(timeout=self.settings.metadata_timeout_seconds) as client:
                response = await client.get(
                    self.settings.metadata_url,
                    headers={"Metadata": "true"},
                )
                response.raise_for_status()
                compute = response.json()
        except httpx.HTTPError as e:
            raise ProvisioningError(
                f"Instance metadata unavailable: {e}",
                operation="resolve self",
            ) from e

        name = compute.get("name")
        if not name:
            raise InfrastructureError("Instance metadata has no VM name", operation="resolve self")
        return name

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
        if self._credential is not None:
            await self._credential.close()
            self._credential = None


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "AzureFleetProvisioner",
    "state_from_statuses",
]
