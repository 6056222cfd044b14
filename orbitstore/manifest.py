"""Database manifests describing a store's name, type and access controller."""

from __future__ import annotations

import posixpath
from dataclasses import dataclass
from typing import Any

import cbor2


class ManifestError(Exception):
    """Raised when a manifest cannot be encoded, decoded or stored."""


@dataclass(frozen=True)
class Manifest:
    """A database manifest."""

    name: str
    type: str
    access_controller: str

    def to_cbor(self) -> bytes:
        """Encode the manifest as canonical CBOR."""
        return cbor2.dumps(
            {
                "name": self.name,
                "type": self.type,
                "access_controller": self.access_controller,
            },
            canonical=True,
        )

    @classmethod
    def from_cbor(cls, data: bytes) -> "Manifest":
        """Decode a manifest from CBOR bytes."""
        try:
            doc = cbor2.loads(data)
        except (cbor2.CBORDecodeError, ValueError, TypeError) as exc:
            raise ManifestError("unable to decode manifest") from exc

        if not isinstance(doc, dict):
            raise ManifestError("manifest must be a map")

        fields = {}
        for key in ("name", "type", "access_controller"):
            value = doc.get(key, "")
            if not isinstance(value, str):
                raise ManifestError(f"manifest field {key!r} must be a string")
            fields[key] = value
        return cls(**fields)


def _ipfs_path(address: str) -> str:
    return posixpath.normpath("/ipfs/" + address)


def create_db_manifest(
    ipfs: Any, name: str, db_type: str, access_controller_address: str
) -> Any:
    """Build a manifest, store it through ``ipfs.dag_put`` and return its identifier."""
    manifest = Manifest(
        name=name,
        type=db_type,
        access_controller=_ipfs_path(access_controller_address),
    )
    try:
        return ipfs.dag_put(manifest.to_cbor())
    except Exception as exc:
        raise ManifestError("unable to write cbor data") from exc