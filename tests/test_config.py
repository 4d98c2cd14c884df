"""Tests for credential lookup and upload config loading."""

from __future__ import annotations

import json

import keyring
import pytest

from mediasync.config import get_access_token, load_upload_config, normalize_shop
from mediasync.models import ResolutionPolicy


@pytest.fixture
def no_keyring(monkeypatch):
    """Empty keyring and no token/shop env vars."""
    monkeypatch.setattr(keyring, "get_password", lambda service, key: None)
    for name in ("SHOPIFY_ACCESS_TOKEN", "ADMIN_ACCESS_TOKEN", "SHOPIFY_SHOP", "SHOP"):
        monkeypatch.delenv(name, raising=False)


class TestAccessToken:
    """Tests for get_access_token()."""

    def test_keyring_first(self, no_keyring, monkeypatch):
        monkeypatch.setattr(keyring, "get_password", lambda service, key: "shpat_keyring")
        monkeypatch.setenv("SHOPIFY_ACCESS_TOKEN", "shpat_env")
        assert get_access_token() == "shpat_keyring"

    def test_env_fallback(self, no_keyring, monkeypatch):
        monkeypatch.setenv("ADMIN_ACCESS_TOKEN", "shpat_admin")
        assert get_access_token() == "shpat_admin"

    def test_missing_token_raises_with_instructions(self, no_keyring):
        with pytest.raises(RuntimeError, match="config set-token"):
            get_access_token()


@pytest.mark.parametrize(
    "raw",
    ["my-store.myshopify.com", "https://my-store.myshopify.com/", " http://my-store.myshopify.com "],
)
def test_normalize_shop(raw):
    assert normalize_shop(raw) == "my-store.myshopify.com"


class TestLoadUploadConfig:
    """Tests for load_upload_config()."""

    def test_reads_json_and_ignores_unknown_keys(self, no_keyring, tmp_path):
        path = tmp_path / "upload_config.json"
        path.write_text(
            json.dumps(
                {
                    "shop": "https://my-store.myshopify.com",
                    "access_token": "shpat_file",
                    "resolution_policy": "sku",
                    "max_concurrency": 5,
                    "comment": "ignored",
                }
            )
        )
        config = load_upload_config(path)
        assert config.shop == "my-store.myshopify.com"
        assert config.access_token == "shpat_file"
        assert config.resolution_policy is ResolutionPolicy.SECONDARY
        assert config.max_concurrency == 5

    def test_missing_file_means_defaults(self, no_keyring, tmp_path, monkeypatch):
        monkeypatch.setenv("SHOPIFY_SHOP", "env-store.myshopify.com")
        monkeypatch.setenv("SHOPIFY_ACCESS_TOKEN", "shpat_env")
        config = load_upload_config(tmp_path / "absent.json")
        assert config.shop == "env-store.myshopify.com"
        assert config.access_token == "shpat_env"
        assert config.resolution_policy is ResolutionPolicy.AUTO
        assert config.max_concurrency == 3
        assert config.file_retries == 2

    def test_overrides_win_and_none_is_ignored(self, no_keyring, tmp_path):
        path = tmp_path / "upload_config.json"
        path.write_text(json.dumps({"shop": "file.myshopify.com", "access_token": "t", "file_retries": 4}))
        config = load_upload_config(path, shop="cli.myshopify.com", file_retries=None, dry_run=True)
        assert config.shop == "cli.myshopify.com"
        assert config.file_retries == 4
        assert config.dry_run is True

    def test_missing_shop_raises(self, no_keyring, tmp_path):
        with pytest.raises(RuntimeError, match="Shop domain not set"):
            load_upload_config(tmp_path / "absent.json", access_token="t")

    def test_token_from_keyring_when_absent(self, no_keyring, tmp_path, monkeypatch):
        monkeypatch.setattr(keyring, "get_password", lambda service, key: "shpat_keyring")
        config = load_upload_config(tmp_path / "absent.json", shop="s.myshopify.com")
        assert config.access_token == "shpat_keyring"

    def test_invalid_values_raise_value_error(self, no_keyring, tmp_path):
        with pytest.raises(ValueError):
            load_upload_config(
                tmp_path / "absent.json", shop="s.myshopify.com", access_token="t", max_concurrency=0
            )
