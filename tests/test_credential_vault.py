"""
Unit tests for the encrypted credential vault.
"""

import base64
import os
import stat

import pytest

from core.credential_vault import (
    ACCESS_RULE, CredentialVault, Credentials, ERASE_MIN_BYTES, IV_SIZE,
    InstallationKeyMaterial, StaticKeyMaterial
)
from core.exceptions import CredentialsError, DecryptionError


class TestEncryption:
    """encrypt/decrypt behaviour"""

    def test_round_trip_returns_equal_credentials(self, vault, credentials):
        assert vault.decrypt(vault.encrypt(credentials)) == credentials

    def test_fresh_iv_per_encryption(self, vault, credentials):
        first = vault.encrypt(credentials)
        second = vault.encrypt(credentials)

        assert first != second
        assert base64.b64decode(first)[:IV_SIZE] != base64.b64decode(second)[:IV_SIZE]
        assert vault.decrypt(first) == vault.decrypt(second) == credentials

    def test_blob_is_iv_plus_whole_blocks(self, vault, credentials):
        raw = base64.b64decode(vault.encrypt(credentials))

        assert len(raw) > IV_SIZE
        assert (len(raw) - IV_SIZE) % 16 == 0

    def test_plaintext_never_appears_in_blob(self, vault, credentials):
        raw = base64.b64decode(vault.encrypt(credentials))

        assert credentials.client_secret.encode() not in raw
        assert credentials.tenant_id.encode() not in raw

    def test_every_single_byte_flip_is_rejected(self, vault, credentials):
        raw = base64.b64decode(vault.encrypt(credentials))

        for position in range(len(raw)):
            tampered = bytearray(raw)
            tampered[position] ^= 0x01
            with pytest.raises(DecryptionError):
                vault.decrypt(base64.b64encode(bytes(tampered)).decode("ascii"))

    def test_wrong_key_material_is_rejected(self, tmp_path, vault, credentials):
        other = CredentialVault(tmp_path / "other", InstallationKeyMaterial("another", "installation"))

        with pytest.raises(DecryptionError):
            other.decrypt(vault.encrypt(credentials))

    @pytest.mark.parametrize("blob", ["", "not base64 at all!", base64.b64encode(b"short").decode()])
    def test_malformed_blobs_are_rejected(self, vault, blob):
        with pytest.raises(DecryptionError):
            vault.decrypt(blob)

    def test_truncated_blob_is_rejected(self, vault, credentials):
        raw = base64.b64decode(vault.encrypt(credentials))

        with pytest.raises(DecryptionError):
            vault.decrypt(base64.b64encode(raw[:-16]).decode())
        with pytest.raises(DecryptionError):
            vault.decrypt(base64.b64encode(raw[:-3]).decode())

    def test_decryption_error_is_a_credentials_error(self, vault):
        with pytest.raises(CredentialsError):
            vault.decrypt("AAAA")

    def test_unicode_values_survive(self, vault):
        creds = Credentials("tenant", "client", "sécret-ключ", "boîte@example.org")

        assert vault.decrypt(vault.encrypt(creds)) == creds


class TestKeyMaterial:

    def test_installation_key_is_deterministic_and_32_bytes(self):
        first = InstallationKeyMaterial("a", "b").derive_key()
        second = InstallationKeyMaterial("a", "b").derive_key()

        assert first == second
        assert len(first) == 32

    def test_installation_key_depends_on_both_secrets(self):
        assert InstallationKeyMaterial("a", "b").derive_key() != InstallationKeyMaterial("a", "c").derive_key()
        assert InstallationKeyMaterial("a", "b").derive_key() != InstallationKeyMaterial("b", "b").derive_key()

    def test_missing_installation_secret_is_refused(self):
        with pytest.raises(ValueError):
            InstallationKeyMaterial("", "b")

    def test_static_key_must_be_32_bytes(self):
        with pytest.raises(ValueError):
            StaticKeyMaterial(b"too short")

    def test_static_key_vault_round_trip(self, tmp_path, credentials):
        vault = CredentialVault(tmp_path, StaticKeyMaterial(os.urandom(32)))

        assert vault.decrypt(vault.encrypt(credentials)) == credentials


class TestPersistence:

    def test_load_returns_none_when_nothing_saved(self, vault):
        assert vault.load() is None
        assert not vault.exists()

    def test_save_then_load(self, vault, credentials):
        vault.save(credentials)

        assert vault.exists()
        assert vault.load() == credentials

    def test_file_holds_only_ciphertext(self, vault, credentials):
        vault.save(credentials)
        content = vault.path.read_text()

        assert credentials.client_secret not in content
        assert vault.decrypt(content) == credentials

    def test_permissions_are_owner_only(self, vault, credentials):
        vault.save(credentials)

        assert stat.S_IMODE(os.stat(vault.path).st_mode) == 0o600
        assert stat.S_IMODE(os.stat(vault.directory).st_mode) == 0o700

    def test_protective_files_are_created(self, vault, credentials):
        vault.save(credentials)

        assert (vault.directory / ".htaccess").read_text() == ACCESS_RULE
        assert (vault.directory / "index.html").is_file()

    def test_save_replaces_previous_credentials(self, vault, credentials):
        vault.save(credentials)
        updated = Credentials("tenant-2", "client-2", "secret-2", "")
        vault.save(updated)

        assert vault.load() == updated
        leftovers = [p.name for p in vault.directory.iterdir() if p.name.startswith(".credentials-")]
        assert leftovers == []

    def test_unreadable_path_raises_credentials_error(self, vault):
        vault.path.mkdir(parents=True)

        with pytest.raises(CredentialsError):
            vault.load()

    def test_corrupted_file_raises_on_load(self, vault, credentials):
        vault.save(credentials)
        vault.path.write_text("garbage")

        with pytest.raises(DecryptionError):
            vault.load()


class TestSecureErase:

    def test_erase_overwrites_before_unlinking(self, vault, credentials, monkeypatch):
        vault.save(credentials)
        original = vault.path.read_bytes()
        written = []

        real_unlink = type(vault.path).unlink

        def spy_unlink(path, *args, **kwargs):
            if path == vault.path:
                written.append(path.read_bytes())
            return real_unlink(path, *args, **kwargs)

        monkeypatch.setattr(type(vault.path), "unlink", spy_unlink)
        vault.secure_erase()

        assert len(written) == 1
        assert written[0] != original
        assert len(written[0]) >= max(len(original), ERASE_MIN_BYTES)

    def test_erase_removes_file_artifacts_and_directory(self, vault, credentials):
        vault.save(credentials)
        vault.secure_erase()

        assert not vault.path.exists()
        assert not vault.directory.exists()
        assert vault.load() is None

    def test_erase_is_idempotent(self, vault, credentials):
        vault.save(credentials)
        vault.secure_erase()
        vault.secure_erase()

        assert not vault.directory.exists()

    def test_erase_without_saved_credentials(self, vault):
        vault.secure_erase()

        assert not vault.exists()


class TestCredentials:

    def test_repr_masks_secret(self, credentials):
        assert credentials.client_secret not in repr(credentials)

    def test_from_dict_rejects_unexpected_shape(self):
        with pytest.raises(DecryptionError):
            Credentials.from_dict({"tenant_id": "t", "client_id": "c"})
        with pytest.raises(DecryptionError):
            Credentials.from_dict({"tenant_id": "t", "client_id": "c", "client_secret": 1, "sender_email": ""})
        with pytest.raises(DecryptionError):
            Credentials.from_dict({"tenant_id": "", "client_id": "c", "client_secret": "s", "sender_email": ""})
