"""Libvirt/KVM provider: VMs on a hypervisor driven over SSH.

Uses ``virsh``, ``virt-install`` and ``qemu-img`` on the hypervisor; guests
boot a cloud image seeded through a cloud-init NoCloud ISO that carries the
local public key.
"""

import asyncio
import logging
import os
import shlex

from catapulta.errors import DestroyError, ProvisionError
from catapulta.provisioning.base import Provisioner
from catapulta.provisioning.keys import read_public_key
from catapulta.provisioning.ssh_transport import SshSession
from catapulta.provisioning.types import NetworkMode, ServerHandle

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_URL = "https://cloud-images.ubuntu.com/releases/24.04/release/ubuntu-24.04-server-cloudimg-amd64.img"
DEFAULT_STORAGE_DIR = "/var/lib/libvirt/images"
DEFAULT_OS_VARIANT = "ubuntu24.04"
BASE_IMAGE_NAME = "cloud-base.img"


def parse_domifaddr(output):
    """Extract the first IPv4 address from ``virsh domifaddr`` output.

    Works for both the lease/agent table (``192.168.122.45/24``) and the
    ``--source arp`` table (``10.0.0.50``).

    Returns:
        The address without CIDR suffix, or None.
    """
    for line in output.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith(("Name", "-")):
            continue
        parts = stripped.split()
        if len(parts) >= 4 and parts[2] == "ipv4":
            ip = parts[3].split("/")[0]
            if ip:
                return ip
    return None


def cloud_init_user_data(public_key):
    return (
        "#cloud-config\n"
        "users:\n"
        "  - name: root\n"
        "    ssh_authorized_keys:\n"
        f"      - {public_key}\n"
        "ssh_pwauth: false\n"
        "package_update: false\n"
    )


def cloud_init_meta_data(name):
    return f"instance-id: {name}\nlocal-hostname: {name}\n"


class Libvirt(Provisioner):
    """Virtual machines on a libvirt hypervisor reachable over SSH."""

    kind = "VM"

    def __init__(
        self,
        hypervisor_host,
        vm_ssh_key,
        hypervisor_user="root",
        hypervisor_key=None,
        vcpus=2,
        memory_mib=2048,
        disk_gib=20,
        image_url=DEFAULT_IMAGE_URL,
        network=NetworkMode.NAT,
        bridge=None,
        storage_dir=DEFAULT_STORAGE_DIR,
        os_variant=DEFAULT_OS_VARIANT,
        ip_attempts=30,
        ip_interval=5,
        **kwargs,
    ):
        super().__init__(**kwargs)
        if network is NetworkMode.BRIDGED and not bridge:
            raise ValueError("Bridged networking needs a host bridge name (e.g. br0)")
        self.hypervisor_host = hypervisor_host
        self.hypervisor_user = hypervisor_user
        self.hypervisor_key = hypervisor_key
        self.vm_ssh_key = os.path.expanduser(vm_ssh_key)
        self.vcpus = vcpus
        self.memory_mib = memory_mib
        self.disk_gib = disk_gib
        self.image_url = image_url
        self.network = network
        self.bridge = bridge
        self.storage_dir = storage_dir
        self.os_variant = os_variant
        self.ip_attempts = ip_attempts
        self.ip_interval = ip_interval

    def hypervisor_session(self):
        address = f"{self.hypervisor_user}@{self.hypervisor_host}" if self.hypervisor_user else self.hypervisor_host
        return SshSession(address, self.hypervisor_key, dry_run=self.dry_run)

    def network_arg(self):
        if self.network is NetworkMode.BRIDGED:
            return f"bridge={self.bridge}"
        return "network=default"

    def detect_admin_key(self) -> str:
        return self.vm_ssh_key

    def seed_iso_path(self, name):
        return f"{self.storage_dir}/{name}-seed.iso"

    def disk_path(self, name):
        return f"{self.storage_dir}/{name}.qcow2"

    async def _check(self, ssh, command, timeout=600):
        rc, stdout, stderr = await ssh.run(command, timeout=timeout)
        if rc != 0:
            raise ProvisionError(f"Hypervisor command failed (exit {rc}): {command}\n{stderr.strip()}")
        return stdout

    async def check_prerequisites(self):
        logger.info("Checking prerequisites...")
        if not os.path.exists(self.vm_ssh_key):
            raise ProvisionError(f"VM SSH key not found: {self.vm_ssh_key}")
        if not os.path.exists(self.vm_ssh_key + ".pub"):
            raise ProvisionError(f"VM SSH public key not found: {self.vm_ssh_key}.pub")

        async with self.hypervisor_session() as ssh:
            rc, _, _ = await ssh.run("echo ok", timeout=30, connect_timeout=10)
            if rc != 0:
                raise ProvisionError(f"Cannot SSH to hypervisor {ssh.address}")
            for tool in ("virsh", "virt-install", "qemu-img"):
                rc, _, _ = await ssh.run(f"command -v {tool}", timeout=30)
                if rc != 0:
                    raise ProvisionError(f"'{tool}' not found on hypervisor")
            rc, _, _ = await ssh.run("command -v genisoimage || command -v mkisofs", timeout=30)
            if rc != 0:
                raise ProvisionError("Neither genisoimage nor mkisofs found on hypervisor (apt install genisoimage)")
        logger.info("Prerequisites OK")

    async def _create_seed_iso(self, ssh, name):
        """Write cloud-init user/meta data and pack them into a NoCloud ISO."""
        try:
            public_key = read_public_key(self.vm_ssh_key)
        except FileNotFoundError as e:
            raise ProvisionError(f"Public key not found: {self.vm_ssh_key}.pub") from e

        seed_dir = f"/tmp/cloud-init-{name}"
        iso_path = self.seed_iso_path(name)
        await self._check(ssh, f"mkdir -p {seed_dir}")
        await ssh.write_file(f"{seed_dir}/user-data", cloud_init_user_data(public_key))
        await ssh.write_file(f"{seed_dir}/meta-data", cloud_init_meta_data(name))
        files = f"{seed_dir}/user-data {seed_dir}/meta-data"
        await self._check(
            ssh,
            "if command -v genisoimage >/dev/null 2>&1; then"
            f" genisoimage -output {iso_path} -volid cidata -joliet -rock {files};"
            " else"
            f" mkisofs -output {iso_path} -volid cidata -joliet -rock {files};"
            " fi",
        )
        await self._check(ssh, f"rm -rf {seed_dir}")
        return iso_path

    async def _lookup_ip(self, ssh, name):
        for source in ("", " --source arp"):
            rc, stdout, _ = await ssh.run(f"virsh domifaddr {name}{source} 2>/dev/null", timeout=30)
            if rc == 0:
                ip = parse_domifaddr(stdout)
                if ip:
                    return ip
        return None

    async def _wait_for_ip(self, ssh, name):
        if self.dry_run:
            return "192.0.2.10"
        for attempt in range(1, self.ip_attempts + 1):
            ip = await self._lookup_ip(ssh, name)
            if ip:
                return ip
            logger.info(f"Waiting for IP ({attempt}/{self.ip_attempts})...")
            await asyncio.sleep(self.ip_interval)
        raise ProvisionError(f"VM '{name}' did not get an IP after {self.ip_attempts} attempts")

    async def create_server(self, spec, ssh_key):
        name = spec.name
        disk = self.disk_path(name)
        cached = f"{self.storage_dir}/{BASE_IMAGE_NAME}"

        async with self.hypervisor_session() as ssh:
            rc, _, _ = await ssh.run(f"test -f {cached}", timeout=30)
            if rc != 0:
                logger.info("Downloading cloud image...")
                await self._check(ssh, f"wget -q -O {cached} {shlex.quote(self.image_url)}", timeout=1800)

            await self._check(ssh, f"cp {cached} {disk}")
            await self._check(ssh, f"qemu-img resize {disk} {self.disk_gib}G")
            seed_iso = await self._create_seed_iso(ssh, name)

            await self._check(
                ssh,
                f"virt-install --name {name}"
                f" --vcpus {self.vcpus}"
                f" --memory {self.memory_mib}"
                f" --disk path={disk},format=qcow2"
                f" --disk path={seed_iso},device=cdrom"
                f" --os-variant {self.os_variant}"
                f" --network {self.network_arg()}"
                " --graphics none --noautoconsole --import",
            )
            ip = await self._wait_for_ip(ssh, name)

        return ServerHandle(name=name, ip=ip, ssh_user="root", ssh_key=ssh_key, region="local", provider_ref=name)

    async def get_server(self, name):
        async with self.hypervisor_session() as ssh:
            rc, stdout, _ = await ssh.run(f"virsh domstate {name} 2>/dev/null", timeout=30)
            if rc != 0 or not stdout.strip():
                return None
            ip = None
            for _ in range(3):
                ip = await self._lookup_ip(ssh, name)
                if ip or self.dry_run:
                    break
                await asyncio.sleep(2)
        # Defined but without an address yet: ip stays empty
        return ServerHandle(name=name, ip=ip or "", ssh_user="root", ssh_key=self.vm_ssh_key, region="local", provider_ref=name)

    async def destroy_server(self, handle):
        name = handle.provider_ref or handle.name
        async with self.hypervisor_session() as ssh:
            # Not running is fine
            await ssh.run(f"virsh destroy {name} 2>/dev/null", timeout=120)
            rc, _, stderr = await ssh.run(f"virsh undefine {name} --remove-all-storage", timeout=300)
            if rc != 0:
                raise DestroyError(f"virsh undefine {name} failed: {stderr.strip()}")
            await ssh.run(f"rm -f {self.seed_iso_path(name)}", timeout=30)
