#!/usr/bin/env python3
"""
src/pvecluster/orchestrator.py

Builds the dependency-ordered provisioning plan for a cluster and hands it to
a reconciliation engine:

1. Declare the shared disk image (or container template) once
2. For every node: identity, cloud-init snippet, compute resource
3. Resolve the plan and export resource ids and reported addresses
"""

import logging
from collections import OrderedDict
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pvecluster.cloud_init import CloudInitTemplate
from pvecluster.config import ClusterConfig
from pvecluster.engine import ReconciliationEngine
from pvecluster.errors import ConfigurationError, ProvisioningError
from pvecluster.mac import derive_mac, generate_mac
from pvecluster.models import CloudInitDocument, ExportedResult, NetworkIdentity, NodeSpec, ResourceKind
from pvecluster.plan import PendingRef, ProvisioningPlan, ResourceSpec

logger = logging.getLogger(__name__)

SNIPPET_FILE_MODE = "0755"


def snippet_resource_name(hostname: str) -> str:
    """Logical name of a node's cloud-init artifact, stable across runs."""
    return f"{hostname}-cloud-init"


class ProvisioningOrchestrator:
    """Declares images, snippets and compute resources for every node."""

    def __init__(
        self,
        config: ClusterConfig,
        engine: ReconciliationEngine,
        template_path: Optional[Union[str, Path]] = None,
        template: Optional[CloudInitTemplate] = None,
        container_password: Optional[str] = None,
    ):
        """
        Args:
            config: Cluster to provision
            engine: Engine that owns the plan and realises it
            template_path: Shared cloud-init template, read once per run
            template: Already loaded template, takes precedence over template_path
            container_password: Root password for container nodes
        """
        config.validate()
        self.config = config
        self.engine = engine
        self.template_path = Path(template_path) if template_path else None
        self.template = template
        self.container_password = container_password
        self.identities: Dict[str, Optional[NetworkIdentity]] = {}
        self.documents: Dict[str, CloudInitDocument] = {}
        self.compute_refs: "OrderedDict[str, PendingRef]" = OrderedDict()
        self._built = False

    # ─── identity & cloud-init ───────────────────────────────────────────────

    def identity_for(self, node: NodeSpec) -> Optional[NetworkIdentity]:
        """Return the node's network identity, or None if its MAC is not pinned."""
        if not node.pin_mac:
            return None
        if self.config.mac_strategy == "random":
            mac = generate_mac()
        else:
            mac = derive_mac(f"{self.config.name}/{node.name}")
        return NetworkIdentity(mac)

    def _load_template(self) -> CloudInitTemplate:
        if self.template is None:
            if self.template_path is None:
                raise ConfigurationError("A cloud-init template is required to provision VMs")
            self.template = CloudInitTemplate.load(self.template_path)
        return self.template

    def render_for(self, node: NodeSpec, identity: Optional[NetworkIdentity]) -> CloudInitDocument:
        """Render and validate the cloud-init document of one node."""
        substitutions: List[tuple] = list(self.config.extra_substitutions.items())
        substitutions.append(("hostname", node.guest_hostname))
        substitutions.append(("role", node.role.value))
        if identity is not None:
            substitutions.append(("mac_address", identity.mac_address))
        return self._load_template().render(substitutions, strict=self.config.strict_templates, node_name=node.name)

    # ─── declarations ────────────────────────────────────────────────────────

    def declare_image(self) -> PendingRef:
        """Declare the disk image or container template shared by all nodes."""
        cfg = self.config
        logger.info(f"📀 Declaring {cfg.image_content_type} artifact {cfg.image_name!r} from {cfg.image_url}")
        return self.engine.declare(
            ResourceSpec(
                name=cfg.image_name,
                kind=ResourceKind.IMAGE,
                args={
                    "content_type": cfg.image_content_type,
                    "datastore_id": cfg.datastore_id,
                    "node_name": cfg.node_name,
                    "url": cfg.image_url,
                    "file_name": cfg.image_file,
                },
            )
        )

    def declare_snippet(self, node: NodeSpec, document: CloudInitDocument) -> PendingRef:
        """Declare the cloud-init snippet artifact of one node."""
        hostname = node.guest_hostname
        logger.info(f"⬆️  Declaring cloud-init snippet {hostname}.yml for {node.name}")
        return self.engine.declare(
            ResourceSpec(
                name=snippet_resource_name(hostname),
                kind=ResourceKind.SNIPPET,
                node_name=node.name,
                args={
                    "node_name": self.config.node_name,
                    "datastore_id": self.config.snippet_datastore_id,
                    "content_type": "snippets",
                    "file_mode": SNIPPET_FILE_MODE,
                    "overwrite": True,
                    "raw_content": document.rendered_content,
                    "file_name": f"{hostname}.yml",
                },
            )
        )

    def declare_vm(
        self, node: NodeSpec, image: PendingRef, snippet: PendingRef, identity: Optional[NetworkIdentity]
    ) -> PendingRef:
        """Declare a VM booting from the shared image with the node's cloud-init."""
        cfg = self.config
        network_device: Dict[str, Any] = {"model": "virtio", "bridge": cfg.bridge}
        if identity is not None:
            network_device["mac_address"] = identity.mac_address

        logger.info(
            f"🆕 Declaring VM {node.vm_name!r} ({node.role.value}): "
            f"{node.cpu_cores} cores, {node.memory_mib}MB RAM, {node.disk_size_gib}G disk"
        )
        return self.engine.declare(
            ResourceSpec(
                name=node.name,
                kind=ResourceKind.VM,
                node_name=node.name,
                args={
                    "node_name": cfg.node_name,
                    "name": node.vm_name,
                    "agent": True,
                    "cpu_cores": node.cpu_cores,
                    "memory": {"dedicated": node.memory_mib, "floating": node.memory_mib},
                    "disks": [
                        {
                            "interface": "scsi0",
                            "datastore_id": cfg.disk_datastore_id,
                            "size_gib": node.disk_size_gib,
                            "iothread": True,
                            "file_format": "raw",
                            "source_file_id": image,
                        }
                    ],
                    "boot_order": ["scsi0", "net0"],
                    "scsi_hardware": "virtio-scsi-single",
                    "os_type": "l26",
                    "network_devices": [network_device],
                    "on_boot": True,
                    "started": True,
                    "initialization": {"datastore_id": cfg.disk_datastore_id, "user_data_file_id": snippet},
                },
            ),
            dependencies=(image, snippet),
        )

    def declare_container(
        self, node: NodeSpec, template: PendingRef, identity: Optional[NetworkIdentity]
    ) -> PendingRef:
        """Declare an LXC container created from the shared template."""
        cfg = self.config
        if not self.container_password:
            raise ConfigurationError("CONTAINER_PASSWORD is required for container nodes", node_name=node.name)

        interface: Dict[str, Any] = {"name": "eth0", "bridge": cfg.bridge, "enabled": True}
        if identity is not None:
            interface["mac_address"] = identity.mac_address

        logger.info(
            f"🆕 Declaring container {node.guest_hostname!r}: "
            f"{node.cpu_cores} cores, {node.memory_mib}MB RAM, {node.disk_size_gib}G disk"
        )
        return self.engine.declare(
            ResourceSpec(
                name=node.name,
                kind=ResourceKind.CONTAINER,
                node_name=node.name,
                args={
                    "node_name": cfg.node_name,
                    "hostname": node.guest_hostname,
                    "os_template_file_id": template,
                    "os_type": "ubuntu",
                    "cpu_cores": node.cpu_cores,
                    "memory": {"dedicated": node.memory_mib, "swap": node.memory_mib},
                    "disk": {"datastore_id": cfg.disk_datastore_id, "size_gib": node.disk_size_gib},
                    "network_interfaces": [interface],
                    "password": self.container_password,
                    "started": True,
                },
            ),
            dependencies=(template,),
        )

    # ─── plan & run ──────────────────────────────────────────────────────────

    def build_plan(self) -> ProvisioningPlan:
        """Declare every resource of the cluster.

        The shared image is declared once before the node loop. A failure on
        any node stops the pass; declarations of earlier nodes stay in the plan.
        """
        if self._built:
            return self.engine.plan

        image = self.declare_image()
        for node in self.config.nodes:
            try:
                identity = self.identity_for(node)
                self.identities[node.name] = identity
                if node.is_container:
                    ref = self.declare_container(node, image, identity)
                else:
                    document = self.render_for(node, identity)
                    self.documents[node.name] = document
                    snippet = self.declare_snippet(node, document)
                    ref = self.declare_vm(node, image, snippet, identity)
            except ProvisioningError as e:
                if e.node_name is None:
                    e.node_name = node.name
                logger.error(f"❌ Plan construction stopped at node {node.name!r}: {e}")
                raise
            self.compute_refs[node.name] = ref

        self._built = True
        return self.engine.plan

    def run(self) -> "OrderedDict[str, ExportedResult]":
        """Build the plan, resolve it and return the exported results per node."""
        plan = self.build_plan()
        plan.validate()
        logger.info(f"🚀 Resolving plan {self.config.name!r}: {len(plan)} resources")
        resolved = self.engine.resolve(plan)

        results: "OrderedDict[str, ExportedResult]" = OrderedDict()
        for node_name, ref in self.compute_refs.items():
            resource = resolved[ref.name]
            addresses = resource.attributes.get("ipv4_addresses")
            results[node_name] = ExportedResult(
                node_name=node_name,
                resource_id=resource.resource_id,
                ipv4_addresses=list(addresses) if addresses is not None else None,
            )
            logger.info(f"📋 {node_name}: id={resource.resource_id} ip={addresses or '-'}")
        return results
