"""Configuration loading: credentials, scanner settings and the upload run config."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import keyring

from mediasync.constants import IMAGE_EXTENSIONS, VIDEO_EXTENSIONS
from mediasync.models import UploadConfig


SERVICE_NAME = "mediasync-shopify"
KEY_NAME = "access_token"

TOKEN_ENV_VARS = ("SHOPIFY_ACCESS_TOKEN", "ADMIN_ACCESS_TOKEN")
SHOP_ENV_VARS = ("SHOPIFY_SHOP", "SHOP")

DEFAULT_CONFIG_PATH = Path("config/upload_config.json")


def get_access_token() -> str:
    """Get the Admin API access token: system keyring first, then env vars.

    Returns:
        Access token string.

    Raises:
        RuntimeError: If no token found anywhere, with actionable instructions.
    """
    token = keyring.get_password(SERVICE_NAME, KEY_NAME)
    if token:
        return token

    for name in TOKEN_ENV_VARS:
        token = os.environ.get(name)
        if token:
            return token

    raise RuntimeError(
        "Shopify access token not found.\n"
        "Set it with: mediasync config set-token YOUR_TOKEN\n"
        "Or: export SHOPIFY_ACCESS_TOKEN=your-token"
    )


def _env_shop() -> str | None:
    for name in SHOP_ENV_VARS:
        value = os.environ.get(name)
        if value:
            return value
    return None


def normalize_shop(shop: str) -> str:
    """Reduce ``https://my-store.myshopify.com/`` to ``my-store.myshopify.com``."""
    shop = shop.strip()
    for prefix in ("https://", "http://"):
        if shop.startswith(prefix):
            shop = shop[len(prefix) :]
    return shop.rstrip("/")


@dataclass
class ScannerConfig:
    """Which files in the media directory are eligible for upload."""

    media_dir: Path
    allowed_extensions: set[str] = field(
        default_factory=lambda: set(IMAGE_EXTENSIONS | VIDEO_EXTENSIONS)
    )
    skip_hidden: bool = True
    start_from: str | None = None
    from_inclusive: bool = False
    limit: int = 0  # 0 = no limit

    def __post_init__(self) -> None:
        """Ensure paths are Path objects."""
        if isinstance(self.media_dir, str):
            self.media_dir = Path(self.media_dir)


def load_upload_config(config_path: Path | None = None, **overrides: Any) -> UploadConfig:
    """Load the upload run configuration from JSON, env and keyring.

    Reads from ``config/upload_config.json`` when *config_path* is ``None``;
    a missing file means defaults. Only recognised ``UploadConfig`` fields
    are taken from the file. Keyword *overrides* that are not ``None`` win
    over the file (the CLI passes its options this way).

    The shop comes from the overrides, the file, or ``SHOPIFY_SHOP`` /
    ``SHOP``. The access token comes from the overrides, the file, or
    :func:`get_access_token`.

    Raises:
        RuntimeError: If no shop domain or no access token can be found.
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    data: dict = {}
    if config_path.exists():
        with open(config_path) as f:
            data = json.load(f)

    # Build kwargs from JSON data, only including recognised fields
    field_names = {f.name for f in fields(UploadConfig)}
    kwargs = {k: v for k, v in data.items() if k in field_names}
    kwargs.update({k: v for k, v in overrides.items() if k in field_names and v is not None})

    shop = kwargs.get("shop") or _env_shop()
    if not shop:
        raise RuntimeError(
            "Shop domain not set.\n"
            "Pass --shop my-store.myshopify.com, add \"shop\" to "
            f"{config_path}, or export SHOPIFY_SHOP=my-store.myshopify.com"
        )
    kwargs["shop"] = normalize_shop(shop)

    if not kwargs.get("access_token"):
        kwargs["access_token"] = get_access_token()

    return UploadConfig(**kwargs)
