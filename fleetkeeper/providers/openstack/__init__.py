"""OpenStack provider: sessions, inventory and the lifecycle facade."""

from .boot import BootSource, ImageSource, VolumeSnapshotSource, boot_source
from .cache import SessionCache, SessionFactory
from .client import Openstack
from .inventory import FINGERPRINT_KEY, ServerStatus, public_address, public_address_ipv4
from .session import (
    Credentials,
    KeystoneV2Session,
    KeystoneV3Session,
    SessionProvider,
    StaticSession,
    authenticate,
)
from .types import FloatingIp, ServerRequest

__all__ = [
    "FINGERPRINT_KEY",
    "BootSource",
    "Credentials",
    "FloatingIp",
    "ImageSource",
    "KeystoneV2Session",
    "KeystoneV3Session",
    "Openstack",
    "ServerRequest",
    "ServerStatus",
    "SessionCache",
    "SessionFactory",
    "SessionProvider",
    "StaticSession",
    "VolumeSnapshotSource",
    "authenticate",
    "boot_source",
    "public_address",
    "public_address_ipv4",
]
