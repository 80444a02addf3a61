"""Unit tests for file key derivation."""

import threading

import pytest

# Low scrypt cost keeps these tests fast
FAST_N = 2**10


class TestKeyDerivation:
    """Tests for scrypt key derivation."""

    def test_derive_key_deterministic(self):
        """The same secret always yields the same key."""
        from docvault.vault.keys import KeyDerivation

        key1 = KeyDerivation.derive_key("root-secret", n=FAST_N)
        key2 = KeyDerivation.derive_key(b"root-secret", n=FAST_N)

        assert key1 == key2
        assert len(key1) == 32

    def test_different_secrets_different_keys(self):
        """Different secrets produce different keys."""
        from docvault.vault.keys import KeyDerivation

        assert KeyDerivation.derive_key("secret-a", n=FAST_N) != KeyDerivation.derive_key(
            "secret-b", n=FAST_N
        )

    def test_empty_secret_rejected(self):
        """An empty secret is a configuration error."""
        from docvault.vault.exceptions import ConfigurationError
        from docvault.vault.keys import KeyDerivation

        with pytest.raises(ConfigurationError):
            KeyDerivation.derive_key("", n=FAST_N)


class TestScryptKeyProvider:
    """Tests for the lazy, cached key provider."""

    def _config(self):
        from docvault.vault.config import VaultConfig

        return VaultConfig(scrypt_n=FAST_N)

    def test_key_cached(self):
        """Derivation runs once; later reads return the same bytes object."""
        from docvault.vault.keys import ScryptKeyProvider

        provider = ScryptKeyProvider("root-secret", self._config())
        assert provider.key is provider.key

    def test_matches_derive_key(self):
        """Provider key equals a direct derivation."""
        from docvault.vault.keys import KeyDerivation, ScryptKeyProvider

        provider = ScryptKeyProvider("root-secret", self._config())
        assert provider.key == KeyDerivation.derive_key("root-secret", n=FAST_N)

    def test_concurrent_first_use(self):
        """Concurrent first reads all see the same key."""
        from docvault.vault.keys import ScryptKeyProvider

        provider = ScryptKeyProvider("root-secret", self._config())
        results = []

        threads = [threading.Thread(target=lambda: results.append(provider.key)) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(results) == 8
        assert len({id(r) for r in results}) == 1

    def test_from_env(self, monkeypatch):
        """from_env reads DOCVAULT_SECRET."""
        from docvault.vault.keys import KeyDerivation, ScryptKeyProvider

        monkeypatch.setenv("DOCVAULT_SECRET", "from-environment")
        provider = ScryptKeyProvider.from_env(config=self._config())

        assert provider.key == KeyDerivation.derive_key("from-environment", n=FAST_N)

    @pytest.mark.parametrize("value", [None, ""])
    def test_from_env_missing(self, monkeypatch, value):
        """A missing or empty secret fails at startup."""
        from docvault.vault.exceptions import ConfigurationError
        from docvault.vault.keys import ScryptKeyProvider

        if value is None:
            monkeypatch.delenv("DOCVAULT_SECRET", raising=False)
        else:
            monkeypatch.setenv("DOCVAULT_SECRET", value)

        with pytest.raises(ConfigurationError):
            ScryptKeyProvider.from_env()

    def test_repr_hides_secret(self):
        """repr never shows the secret or the key."""
        from docvault.vault.keys import ScryptKeyProvider

        provider = ScryptKeyProvider("super-secret-value", self._config())
        provider.key

        assert "super-secret-value" not in repr(provider)
        assert provider.key.hex() not in repr(provider)


class TestStaticKeyProvider:
    """Tests for the fixed-key provider."""

    def test_returns_key(self):
        from docvault.vault.keys import StaticKeyProvider

        assert StaticKeyProvider(b"k" * 32).key == b"k" * 32

    @pytest.mark.parametrize("length", [0, 16, 31, 33])
    def test_rejects_wrong_length(self, length):
        from docvault.vault.keys import StaticKeyProvider

        with pytest.raises(ValueError):
            StaticKeyProvider(b"k" * length)
