"""Machine handle assembly: transport and convergence selection.

Only descriptors are built here. Opening connections and running the
installer belong to the host framework's transport and convergence layers.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from loguru import logger

from vcodriver.core.exceptions import InstanceNotReadyError
from vcodriver.instance import Instance
from vcodriver.options import MachineOptions
from vcodriver.reference import MachineReference

DEFAULT_SSH_USERNAME = "root"
DEFAULT_WINRM_USERNAME = "Administrator"


@dataclass(frozen=True, slots=True)
class SshTransport:
    """SSH connection settings for a Unix machine.

    Attributes:
        host: Remote host IP or hostname.
        username: SSH username.
        sudo: Prefix commands with sudo.
        gateway: Jump host, ``[user@]host[:port]``.
        port: SSH port (default 22).
    """

    host: str
    username: str = DEFAULT_SSH_USERNAME
    sudo: bool = False
    gateway: str | None = None
    port: int = 22


@dataclass(frozen=True, slots=True)
class WinRmTransport:
    """WinRM connection settings for a Windows machine."""

    host: str
    username: str = DEFAULT_WINRM_USERNAME
    port: int = 5985
    scheme: str = "http"


type Transport = SshTransport | WinRmTransport


class Convergence(StrEnum):
    INSTALL_MSI = "install_msi"
    INSTALL_CACHED = "install_cached"
    INSTALL_SH = "install_sh"
    NO_CONVERGE = "no_converge"


@dataclass(frozen=True, slots=True)
class MachineHandle:
    name: str
    transport: Transport
    convergence: Convergence
    instance: Instance
    is_windows: bool = False


def select_convergence(
    reference: MachineReference | None,
    *,
    cached_installer: bool = False,
) -> Convergence:
    """Pick the convergence strategy. First match wins:

    1. no reference        -> no-op
    2. Windows             -> MSI installer
    3. cached installer    -> cached install
    4. otherwise           -> install script
    """
    if reference is None or reference.is_empty:
        return Convergence.NO_CONVERGE
    if reference.is_windows:
        return Convergence.INSTALL_MSI
    if cached_installer:
        return Convergence.INSTALL_CACHED
    return Convergence.INSTALL_SH


def select_transport(reference: MachineReference | None, host: str) -> Transport:
    if reference is not None and reference.is_windows:
        return WinRmTransport(host=host)
    if reference is None:
        return SshTransport(host=host)
    return SshTransport(
        host=host,
        username=reference.ssh_username or DEFAULT_SSH_USERNAME,
        sudo=reference.sudo,
        gateway=reference.ssh_gateway,
    )


def assemble(
    name: str,
    reference: MachineReference | None,
    instance: Instance | None,
    options: MachineOptions | None = None,
    *,
    operation: str = "connect",
) -> MachineHandle:
    """Build a connectable handle for a live instance.

    Raises:
        InstanceNotReadyError: No instance, or the instance has no address yet.
    """
    if instance is None:
        raise InstanceNotReadyError(name, operation, "no instance found")
    host = instance.address
    if not host:
        raise InstanceNotReadyError(name, operation, "instance has no IP address or host name")

    options = options or MachineOptions()
    handle = MachineHandle(
        name=name,
        transport=select_transport(reference, host),
        convergence=select_convergence(reference, cached_installer=options.cached_installer),
        instance=instance,
        is_windows=bool(reference and reference.is_windows),
    )
    logger.bind(component="machine", machine=name).debug(
        "Assembled {kind} handle for {host} ({convergence})",
        kind=type(handle.transport).__name__, host=host, convergence=handle.convergence,
    )
    return handle
