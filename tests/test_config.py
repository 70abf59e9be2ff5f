"""Unit tests for configuration objects and environment loading."""

import logging

import pytest

from contentpack.config import (
    ArchiveConfig, CipherAlgorithm, EncryptionConfig, PackagingConfig,
    ShardingConfig, get_config, log_config
)
from contentpack.exceptions import ConfigurationError


class TestDefaults:
    """Test default values."""

    def test_sharding_defaults(self):
        config = ShardingConfig()

        assert config.enabled
        assert config.piece_size == 1024 * 1024
        assert config.max_pieces == 100
        assert config.replication_factor == 1

    def test_encryption_defaults(self):
        config = EncryptionConfig()

        assert not config.enabled
        assert config.algorithm is CipherAlgorithm.AES_GCM
        assert config.key_bytes == 32

    def test_configs_are_frozen(self):
        config = ShardingConfig()
        with pytest.raises(AttributeError):
            config.piece_size = 1


class TestValidation:
    """Test validation at construction."""

    @pytest.mark.parametrize("kwargs", [
        {"piece_size": 0},
        {"max_pieces": 0},
        {"replication_factor": 0},
    ])
    def test_invalid_sharding(self, kwargs):
        with pytest.raises(ConfigurationError):
            ShardingConfig(**kwargs)

    def test_algorithm_string_normalized(self):
        config = EncryptionConfig(algorithm='aes-ctr')
        assert config.algorithm is CipherAlgorithm.AES_CTR

    def test_unknown_algorithm(self):
        with pytest.raises(ConfigurationError):
            EncryptionConfig(algorithm='rot13')

    def test_invalid_key_size(self):
        with pytest.raises(ConfigurationError):
            EncryptionConfig(key_size=192)

    def test_chacha_requires_256(self):
        with pytest.raises(ConfigurationError):
            EncryptionConfig(algorithm=CipherAlgorithm.CHACHA20_POLY1305, key_size=128)

    def test_archive_max_size(self):
        with pytest.raises(ConfigurationError):
            ArchiveConfig(max_size=0)


class TestEnvironment:
    """Test environment overrides."""

    def test_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv('CONTENTPACK_PIECE_SIZE', '2048')
        monkeypatch.setenv('CONTENTPACK_REPLICATION', '2')
        monkeypatch.setenv('CONTENTPACK_ENCRYPTION', 'yes')
        monkeypatch.setenv('CONTENTPACK_CIPHER', 'ChaCha20-Poly1305')
        monkeypatch.setenv('CONTENTPACK_ARCHIVE_COMPRESSION', 'true')
        monkeypatch.setenv('CONTENTPACK_STORE_DIR', str(tmp_path))

        config = get_config()

        assert config.sharding.piece_size == 2048
        assert config.sharding.replication_factor == 2
        assert config.encryption.enabled
        assert config.encryption.algorithm is CipherAlgorithm.CHACHA20_POLY1305
        assert config.archive.compression
        assert config.store_dir == str(tmp_path)

    def test_unparsable_values_fall_back(self, monkeypatch, caplog):
        monkeypatch.setenv('CONTENTPACK_MAX_PIECES', 'many')
        monkeypatch.setenv('CONTENTPACK_SHARDING', 'maybe')

        with caplog.at_level(logging.WARNING):
            config = ShardingConfig.from_env()

        assert config.max_pieces == 100
        assert config.enabled
        assert 'CONTENTPACK_MAX_PIECES' in caplog.text

    def test_invalid_env_value_raises(self, monkeypatch):
        monkeypatch.setenv('CONTENTPACK_PIECE_SIZE', '0')
        with pytest.raises(ConfigurationError):
            PackagingConfig.from_env()

    def test_log_config(self, caplog):
        with caplog.at_level(logging.INFO, logger='contentpack.config'):
            log_config(PackagingConfig())
        assert 'Configuration Packaging' in caplog.text
