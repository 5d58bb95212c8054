import os
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from dotenv import dotenv_values

from .logging import get_logger
from .paths import credential_path, default_catalog_path, expand_abs, find_project_root

log = get_logger("config")

DEFAULT_ETSY_API_BASE = "https://api.etsy.com/v3"
DEFAULT_HTTP_TIMEOUT = 30.0


def _find_upwards(start_dir: str, filename: str) -> Optional[str]:
    """Return first matching file found when walking up from start_dir.

    Running the CLI from a subdirectory still finds the repository-level
    `.env`.
    """
    d = os.path.abspath(start_dir or ".")
    while True:
        candidate = os.path.join(d, filename)
        if os.path.isfile(candidate):
            return candidate
        parent = os.path.dirname(d)
        if parent == d:
            return None
        d = parent


def _read_dotenv(dotenv_dir: str) -> Dict[str, str]:
    """Read the nearest .env into a mapping without mutating os.environ."""
    path = _find_upwards(dotenv_dir, ".env")
    if not path:
        log.debug(f"No .env found starting from: {os.path.abspath(dotenv_dir)}")
        return {}
    values = {k: (v or "").strip() for k, v in dotenv_values(path).items()}
    log.debug(f"Loaded {len(values)} key(s) from .env at {path}")
    return values


@dataclass(frozen=True)
class Settings:
    shopify_url: Optional[str] = None
    shopify_token: Optional[str] = None
    etsy_keystring: Optional[str] = None
    etsy_secret: Optional[str] = None
    etsy_shop_id: Optional[str] = None
    etsy_api_base: str = DEFAULT_ETSY_API_BASE
    catalog_db: Optional[str] = None
    config_dir: Optional[str] = None
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    project_root: str = field(default_factory=os.getcwd)

    @property
    def credential_path(self) -> str:
        return credential_path(self.config_dir)

    @property
    def catalog_path(self) -> str:
        if self.catalog_db:
            return expand_abs(self.catalog_db)
        return default_catalog_path(self.project_root)

    @property
    def etsy_token_url(self) -> str:
        return f"{self.etsy_api_base.rstrip('/')}/public/oauth/token"

    def missing_shopify(self) -> List[str]:
        missing = []
        if not self.shopify_url:
            missing.append("SHOPIFY_URL")
        if not self.shopify_token:
            missing.append("SHOPIFY_ACCESS_TOKEN")
        return missing

    def missing_etsy(self) -> List[str]:
        missing = []
        if not self.etsy_keystring:
            missing.append("ETSY_KEYSTRING")
        if not self.etsy_shop_id:
            missing.append("ETSY_SHOP_ID")
        return missing


def _pick(key: str, environ: Mapping[str, str], dotenv: Mapping[str, str]) -> Optional[str]:
    v = environ.get(key)
    if v and v.strip():
        return v.strip()
    v = dotenv.get(key)
    return v.strip() if v and v.strip() else None


def _coerce_timeout(value: Optional[str]) -> float:
    if not value:
        return DEFAULT_HTTP_TIMEOUT
    try:
        parsed = float(value)
    except ValueError:
        log.warning(f"Ignoring invalid HTTP_TIMEOUT={value!r}; using {DEFAULT_HTTP_TIMEOUT}")
        return DEFAULT_HTTP_TIMEOUT
    return parsed if parsed > 0 else DEFAULT_HTTP_TIMEOUT


def load_settings(start_dir: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build Settings from the environment, falling back to the nearest .env."""
    start = start_dir or os.getcwd()
    env = os.environ if environ is None else environ
    dotenv = _read_dotenv(start)

    settings = Settings(
        shopify_url=_pick("SHOPIFY_URL", env, dotenv),
        shopify_token=_pick("SHOPIFY_ACCESS_TOKEN", env, dotenv),
        etsy_keystring=_pick("ETSY_KEYSTRING", env, dotenv),
        etsy_secret=_pick("ETSY_SECRET", env, dotenv),
        etsy_shop_id=_pick("ETSY_SHOP_ID", env, dotenv),
        etsy_api_base=_pick("ETSY_API_BASE", env, dotenv) or DEFAULT_ETSY_API_BASE,
        catalog_db=_pick("CATALOG_DB", env, dotenv),
        config_dir=_pick("ORDER_TRACKER_CONFIG_DIR", env, dotenv),
        http_timeout=_coerce_timeout(_pick("HTTP_TIMEOUT", env, dotenv)),
        project_root=find_project_root(start),
    )
    if settings.missing_shopify():
        log.info(f"Shopify not configured (missing {', '.join(settings.missing_shopify())})")
    if settings.missing_etsy():
        log.info(f"Etsy not configured (missing {', '.join(settings.missing_etsy())})")
    return settings
