from __future__ import annotations

import base64
import unittest

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from binfetch.common.config import RuntimeConfig
from binfetch.common.errors import ManifestError
from binfetch.common.manifest_security import (
    sign_catalog,
    validate_archive_member_path,
    validate_trusted_url,
    verify_catalog_signature,
)
from binfetch.installer.manifest import parse_catalog
from tests.support import artifact, catalog, release


def _keypair() -> tuple[str, str]:
    key = Ed25519PrivateKey.generate()
    private_raw = key.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_raw = key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
    return base64.b64encode(private_raw).decode("ascii"), base64.b64encode(public_raw).decode("ascii")


class CatalogSignatureTests(unittest.TestCase):
    def setUp(self) -> None:
        self.private_b64, self.public_b64 = _keypair()
        self.data = catalog(release("1.0.0", artifact("linux", "x86_64", 64)))

    def test_sign_and_verify(self) -> None:
        signed = sign_catalog(self.data, self.private_b64, "release-2026")
        key_id = verify_catalog_signature(signed, {"release-2026": self.public_b64})
        self.assertEqual(key_id, "release-2026")

    def test_tampered_catalog_fails(self) -> None:
        signed = sign_catalog(self.data, self.private_b64, "release-2026")
        signed["releases"][0]["artifacts"][0]["url"] = "https://downloads.example.com/other.zip"
        with self.assertRaises(ValueError):
            verify_catalog_signature(signed, {"release-2026": self.public_b64})

    def test_untrusted_key_id_fails(self) -> None:
        signed = sign_catalog(self.data, self.private_b64, "release-2026")
        with self.assertRaises(ValueError):
            verify_catalog_signature(signed, {})

    def test_parse_checks_signature_when_present(self) -> None:
        signed = sign_catalog(self.data, self.private_b64, "release-2026")
        runtime = RuntimeConfig(manifest_public_keys={"release-2026": self.public_b64})
        self.assertEqual(parse_catalog(signed, runtime).name, "tool")

        signed["name"] = "other"
        with self.assertRaises(ManifestError):
            parse_catalog(signed, runtime)

    def test_unsigned_catalog_rejected_when_signature_required(self) -> None:
        with self.assertRaises(ManifestError):
            parse_catalog(self.data, RuntimeConfig(require_signature=True))


class UrlAndPathValidationTests(unittest.TestCase):
    def test_urls(self) -> None:
        validate_trusted_url("https://github.com/a/b.zip", ())
        validate_trusted_url("https://objects.githubusercontent.com/x", ("githubusercontent.com",))
        with self.assertRaises(ValueError):
            validate_trusted_url("http://github.com/a/b.zip", ())
        with self.assertRaises(ValueError):
            validate_trusted_url("ftp://github.com/a/b.zip", (), allow_http=True)
        with self.assertRaises(ValueError):
            validate_trusted_url("https://github.com.evil.test/a", ("github.com",))

    def test_archive_member_paths(self) -> None:
        self.assertEqual(str(validate_archive_member_path("tool/bin/tool")), "tool/bin/tool")
        for bad in ("", "/etc/passwd", "../tool", "a/../../b", "C:/tool", "..\\tool"):
            with self.assertRaises(ValueError, msg=bad):
                validate_archive_member_path(bad)


if __name__ == "__main__":
    unittest.main()
