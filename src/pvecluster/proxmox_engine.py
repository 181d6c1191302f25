#!/usr/bin/env python3
"""
src/pvecluster/proxmox_engine.py

Realise a provisioning plan on a Proxmox VE host.

Images are fetched with the storage ``download-url`` API, cloud-init snippets
are written over SFTP (the API cannot upload snippets), VMs and containers
are created through the qemu/lxc API. Existing resources with the same name
are reused, so re-running a plan converges instead of duplicating.
"""

import logging
import os
import posixpath
import time
from typing import Any, Dict, List, Optional

import paramiko
from proxmoxer.core import ResourceException

from pvecluster.engine import ReconciliationEngine
from pvecluster.errors import ResourceDeclarationError
from pvecluster.models import ResolvedResource, ResourceKind
from pvecluster.plan import ResourceDeclaration
from pvecluster.session import ProxmoxSession

logger = logging.getLogger(__name__)


class ProxmoxEngine(ReconciliationEngine):
    """Reconciliation engine backed by proxmoxer and paramiko."""

    def __init__(
        self,
        proxmox: Any,
        session: ProxmoxSession,
        task_timeout: int = 600,
        agent_timeout: int = 180,
        poll_interval: int = 5,
    ) -> None:
        """
        Args:
            proxmox: proxmoxer ProxmoxAPI handle
            session: Session the handle was opened with, used for SSH uploads
            task_timeout: Seconds to wait for a Proxmox task to finish
            agent_timeout: Seconds to wait for the guest agent to report addresses
            poll_interval: Seconds between status polls
        """
        super().__init__()
        self.proxmox = proxmox
        self.session = session
        self.task_timeout = task_timeout
        self.agent_timeout = agent_timeout
        self.poll_interval = poll_interval

    def realize(self, declaration: ResourceDeclaration, args: Dict[str, Any]) -> ResolvedResource:
        handlers = {
            ResourceKind.IMAGE: self.ensure_download,
            ResourceKind.SNIPPET: self.ensure_snippet,
            ResourceKind.VM: self.ensure_vm,
            ResourceKind.CONTAINER: self.ensure_container,
        }
        try:
            return handlers[declaration.kind](declaration.name, args)
        except ResourceException as e:
            raise ResourceDeclarationError(
                f"Proxmox rejected {declaration.kind.value} {declaration.name!r}: {e}",
                node_name=declaration.spec.node_name,
            ) from e

    # ─── tasks ───────────────────────────────────────────────────────────────

    def _wait_for_task(self, node: str, upid: str) -> None:
        """Block until the task *upid* stops; raise if it did not end OK."""
        deadline = time.time() + self.task_timeout
        while time.time() < deadline:
            status = self.proxmox.nodes(node).tasks(upid).status.get()
            if status.get("status") == "stopped":
                if status.get("exitstatus") != "OK":
                    raise ResourceDeclarationError(f"task {upid} failed: {status.get('exitstatus')}")
                return
            time.sleep(self.poll_interval)
        raise ResourceDeclarationError(f"task {upid} did not finish within {self.task_timeout}s")

    # ─── images ──────────────────────────────────────────────────────────────

    def ensure_download(self, name: str, args: Dict[str, Any]) -> ResolvedResource:
        """Download the image to the datastore unless it is already there."""
        node, datastore = args["node_name"], args["datastore_id"]
        content_type, file_name = args["content_type"], args["file_name"]
        volid = f"{datastore}:{content_type}/{file_name}"

        storage = self.proxmox.nodes(node).storage(datastore)
        for item in storage.content.get(content=content_type):
            if item.get("volid") == volid:
                logger.info(f"ℹ️  {volid} already exists on {node}, skipping download")
                return ResolvedResource(name, volid)

        logger.info(f"⬇️  Downloading {args['url']} → {volid} on {node}")
        upid = storage("download-url").post(content=content_type, filename=file_name, url=args["url"])
        self._wait_for_task(node, upid)
        return ResolvedResource(name, volid)

    # ─── snippets ────────────────────────────────────────────────────────────

    def _ssh_connect(self) -> paramiko.SSHClient:
        """Return a connected Paramiko SSHClient for the session host."""
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                hostname=self.session.host,
                username=self.session.ssh_user,
                key_filename=os.path.expanduser(self.session.ssh_key_path),
            )
        except (paramiko.SSHException, OSError) as e:
            client.close()
            raise ResourceDeclarationError(f"SSH connection to {self.session.host} failed: {e}") from e
        return client

    def _snippet_dir(self, datastore: str) -> str:
        config = self.proxmox.storage(datastore).get()
        if "snippets" not in config.get("content", "").split(","):
            raise ResourceDeclarationError(f"datastore {datastore!r} does not allow snippets content")
        return posixpath.join(config.get("path", "/var/lib/vz"), "snippets")

    def ensure_snippet(self, name: str, args: Dict[str, Any]) -> ResolvedResource:
        """Write the rendered cloud-init document into the datastore's snippets dir."""
        datastore, file_name = args["datastore_id"], args["file_name"]
        volid = f"{datastore}:snippets/{file_name}"
        remote_dir = self._snippet_dir(datastore)
        remote_path = posixpath.join(remote_dir, file_name)

        ssh = self._ssh_connect()
        try:
            sftp = ssh.open_sftp()
            try:
                if not args.get("overwrite", True) and self._remote_exists(sftp, remote_path):
                    logger.info(f"ℹ️  Skipping {remote_path}: already exists")
                    return ResolvedResource(name, volid)
                logger.info(f"⬆️  Uploading {file_name} to {self.session.host}:{remote_dir}")
                with sftp.open(remote_path, "w") as remote_file:
                    remote_file.write(args["raw_content"])
                sftp.chmod(remote_path, int(args.get("file_mode", "0644"), 8))
            finally:
                sftp.close()
        except (paramiko.SSHException, OSError) as e:
            raise ResourceDeclarationError(f"upload of {file_name} failed: {e}") from e
        finally:
            ssh.close()
        return ResolvedResource(name, volid)

    @staticmethod
    def _remote_exists(sftp: paramiko.SFTPClient, path: str) -> bool:
        try:
            sftp.stat(path)
            return True
        except FileNotFoundError:
            return False

    # ─── compute ─────────────────────────────────────────────────────────────

    def get_next_available_vmid(self) -> int:
        """Find the next free VMID using the cluster-wide resources query."""
        used = {int(resource["vmid"]) for resource in self.proxmox.cluster.resources.get(type="vm")}
        for candidate in range(100, 999999999):
            if candidate not in used:
                return candidate
        raise ResourceDeclarationError("No available VMIDs found")

    def find_guest(self, node: str, kind: str, name: str) -> Optional[int]:
        """Return the vmid of an existing qemu/lxc guest called *name*, else None."""
        guests = getattr(self.proxmox.nodes(node), kind).get()
        for guest in guests:
            if guest.get("name") == name:
                return int(guest["vmid"])
        return None

    @staticmethod
    def _net_config(device: Dict[str, Any]) -> str:
        model = device.get("model", "virtio")
        if device.get("mac_address"):
            model = f"{model}={device['mac_address'].upper()}"
        return f"{model},bridge={device['bridge']}"

    def vm_create_args(self, vmid: int, args: Dict[str, Any]) -> Dict[str, Any]:
        """Translate declared VM arguments into qemu create parameters."""
        memory = args["memory"]
        create_args: Dict[str, Any] = {
            "vmid": vmid,
            "name": args["name"],
            "cores": args["cpu_cores"],
            "memory": memory["dedicated"],
            "balloon": memory.get("floating", memory["dedicated"]),
            "agent": "enabled=1" if args.get("agent") else "enabled=0",
            "scsihw": args.get("scsi_hardware", "virtio-scsi-single"),
            "ostype": args.get("os_type", "l26"),
            "onboot": 1 if args.get("on_boot") else 0,
            "boot": "order=" + ";".join(args.get("boot_order", [])),
        }
        for disk in args["disks"]:
            options = [f"{disk['datastore_id']}:0", f"import-from={disk['source_file_id']}"]
            if disk.get("iothread"):
                options.append("iothread=1")
            if disk.get("file_format"):
                options.append(f"format={disk['file_format']}")
            create_args[disk["interface"]] = ",".join(options)
        for idx, device in enumerate(args.get("network_devices", [])):
            create_args[f"net{idx}"] = self._net_config(device)

        init = args.get("initialization")
        if init:
            create_args["ide2"] = f"{init['datastore_id']}:cloudinit"
            create_args["cicustom"] = f"user={init['user_data_file_id']}"
        return create_args

    def ensure_vm(self, name: str, args: Dict[str, Any]) -> ResolvedResource:
        """Create and start the VM unless one with the same name exists."""
        node = args["node_name"]
        vmid = self.find_guest(node, "qemu", args["name"])
        if vmid is not None:
            logger.info(f"✅ VM {args['name']!r} (vmid={vmid}) already exists, skipping.")
        else:
            vmid = self.get_next_available_vmid()
            logger.info(f"🆕 Creating VM {args['name']!r} on {node!r} (vmid={vmid})")
            upid = self.proxmox.nodes(node).qemu.create(**self.vm_create_args(vmid, args))
            self._wait_for_task(node, upid)
            for disk in args["disks"]:
                self.proxmox.nodes(node).qemu(vmid).resize.put(disk=disk["interface"], size=f"{disk['size_gib']}G")
            if args.get("started"):
                logger.info(f"▶️  Starting VM {vmid}")
                self._wait_for_task(node, self.proxmox.nodes(node).qemu(vmid).status.start.post())

        attributes: Dict[str, Any] = {}
        if args.get("agent"):
            attributes["ipv4_addresses"] = self.vm_addresses(node, vmid)
        return ResolvedResource(name, str(vmid), attributes)

    def vm_addresses(self, node: str, vmid: int) -> Optional[List[str]]:
        """Poll the guest agent for IPv4 addresses; None if it never answers."""
        deadline = time.time() + self.agent_timeout
        while True:
            try:
                reply = self.proxmox.nodes(node).qemu(vmid).agent("network-get-interfaces").get()
            except ResourceException:
                reply = None
            if reply:
                addresses = [
                    address["ip-address"]
                    for iface in reply.get("result", [])
                    if iface.get("name") != "lo"
                    for address in iface.get("ip-addresses", [])
                    if address.get("ip-address-type") == "ipv4"
                ]
                if addresses:
                    return addresses
            if time.time() >= deadline:
                logger.warning(f"⚠️  Guest agent of VM {vmid} reported no addresses")
                return None
            time.sleep(self.poll_interval)

    def container_create_args(self, vmid: int, args: Dict[str, Any]) -> Dict[str, Any]:
        """Translate declared container arguments into lxc create parameters."""
        memory, disk = args["memory"], args["disk"]
        create_args: Dict[str, Any] = {
            "vmid": vmid,
            "hostname": args["hostname"],
            "ostemplate": args["os_template_file_id"],
            "ostype": args.get("os_type", "ubuntu"),
            "cores": args["cpu_cores"],
            "memory": memory["dedicated"],
            "swap": memory.get("swap", 0),
            "rootfs": f"{disk['datastore_id']}:{disk['size_gib']}",
            "password": args["password"],
            "start": 1 if args.get("started") else 0,
        }
        for idx, iface in enumerate(args.get("network_interfaces", [])):
            if not iface.get("enabled", True):
                continue
            net = f"name={iface['name']},bridge={iface['bridge']},ip=dhcp"
            if iface.get("mac_address"):
                net += f",hwaddr={iface['mac_address'].upper()}"
            create_args[f"net{idx}"] = net
        return create_args

    def ensure_container(self, name: str, args: Dict[str, Any]) -> ResolvedResource:
        """Create and start the container unless one with the same hostname exists."""
        node = args["node_name"]
        vmid = self.find_guest(node, "lxc", args["hostname"])
        if vmid is not None:
            logger.info(f"✅ Container {args['hostname']!r} (vmid={vmid}) already exists, skipping.")
        else:
            vmid = args.get("vmid") or self.get_next_available_vmid()
            logger.info(f"🆕 Creating container {args['hostname']!r} on {node!r} (vmid={vmid})")
            upid = self.proxmox.nodes(node).lxc.create(**self.container_create_args(vmid, args))
            self._wait_for_task(node, upid)

        return ResolvedResource(name, str(vmid), {"ipv4_addresses": self.container_addresses(node, vmid)})

    def container_addresses(self, node: str, vmid: int) -> Optional[List[str]]:
        """Read IPv4 addresses of a running container, None if unavailable."""
        try:
            interfaces = self.proxmox.nodes(node).lxc(vmid).interfaces.get()
        except ResourceException:
            return None
        addresses = [
            iface["inet"].split("/", 1)[0] for iface in interfaces or [] if iface.get("name") != "lo" and iface.get("inet")
        ]
        return addresses or None
