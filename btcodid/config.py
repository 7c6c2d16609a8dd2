# btcodid/config.py
"""
Configuration loading.

Settings come from a YAML file and can be overridden by BTCODID_*
environment variables:

    network: testnet
    fee_rate: 5
    ord_url: http://localhost:80
    esplora_url: https://mempool.space/testnet/api
    key_store_dir: ~/.btcodid/keys
    did_store_dir: ~/.btcodid/dids
    resolution_cache_ttl: 300
    document_loader_timeout: 10
"""

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml

from .bitcoin import BitcoinManager
from .did.cache import ResolutionCache
from .did.log import DidStore
from .did.resolver import BtcoDidResolver
from .errors import InvalidInputError, ProviderRequiredError
from .keys import KeyManager, KeyStore
from .proofs.loader import StaticDocumentLoader
from .providers import OrdHttpProvider, OrdinalsProvider, StaticFeeOracle
from .satoshi import Network

logger = logging.getLogger(__name__)

ENV_PREFIX = "BTCODID_"


@dataclass
class Config:
    network: Network = Network.MAINNET
    fee_rate: Optional[float] = None
    ord_url: Optional[str] = None
    esplora_url: Optional[str] = None
    key_store_dir: Optional[Path] = None
    did_store_dir: Optional[Path] = None
    resolution_cache_ttl: float = 300.0
    document_loader_timeout: float = 10.0

    def __post_init__(self):
        self.network = Network.from_value(self.network)
        for name in ("key_store_dir", "did_store_dir"):
            value = getattr(self, name)
            if value is not None and not isinstance(value, Path):
                setattr(self, name, Path(value).expanduser())
        if self.fee_rate is not None:
            self.fee_rate = float(self.fee_rate)
            if self.fee_rate <= 0:
                raise InvalidInputError(f"fee_rate must be positive: {self.fee_rate}")
        self.resolution_cache_ttl = float(self.resolution_cache_ttl)
        self.document_loader_timeout = float(self.document_loader_timeout)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "network": self.network.value,
            "fee_rate": self.fee_rate,
            "ord_url": self.ord_url,
            "esplora_url": self.esplora_url,
            "key_store_dir": str(self.key_store_dir) if self.key_store_dir else None,
            "did_store_dir": str(self.did_store_dir) if self.did_store_dir else None,
            "resolution_cache_ttl": self.resolution_cache_ttl,
            "document_loader_timeout": self.document_loader_timeout,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Config":
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {', '.join(sorted(unknown))}")
        return cls(**{k: v for k, v in data.items() if k in known and v is not None})

    @classmethod
    def from_yaml(cls, yaml_content: str) -> "Config":
        """Parse config from a YAML string."""
        data = yaml.safe_load(yaml_content) or {}
        if not isinstance(data, dict):
            raise InvalidInputError("Config YAML must be a mapping")
        return cls.from_dict(data)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None,
                 base: Optional["Config"] = None) -> "Config":
        """Apply BTCODID_* variables on top of base (or the defaults)."""
        env = os.environ if environ is None else environ
        data = (base or cls()).to_dict()
        for f in fields(cls):
            value = env.get(ENV_PREFIX + f.name.upper())
            if value is not None and value != "":
                data[f.name] = value
        return cls.from_dict(data)

    @classmethod
    def load(cls, path: Optional[Union[Path, str]] = None,
             environ: Optional[Mapping[str, str]] = None) -> "Config":
        """
        Load config from a YAML file, then apply environment overrides.

        A missing path (or BTCODID_CONFIG unset) yields the defaults.
        """
        env = os.environ if environ is None else environ
        path = path or env.get(ENV_PREFIX + "CONFIG")
        base = None
        if path:
            with open(Path(path).expanduser()) as f:
                base = cls.from_yaml(f.read())
        return cls.from_env(env, base)

    # -- component builders -----------------------------------------------

    def ordinals_provider(self) -> Optional[OrdinalsProvider]:
        """HTTP provider for ord_url, or None when no server is configured."""
        if not self.ord_url:
            return None
        return OrdHttpProvider(self.ord_url, self.esplora_url)

    def key_manager(self) -> KeyManager:
        """Key manager over key_store_dir (in memory when unset)."""
        return KeyManager(KeyStore(self.key_store_dir), self.network)

    def did_store(self) -> DidStore:
        if self.did_store_dir is None:
            raise InvalidInputError("did_store_dir is not configured")
        return DidStore(self.did_store_dir)

    def did_resolver(self, provider: Optional[OrdinalsProvider] = None) -> BtcoDidResolver:
        """
        Caching DID resolver.

        Raises:
            ProviderRequiredError: No provider given and no ord_url set
        """
        provider = provider or self.ordinals_provider()
        if provider is None:
            raise ProviderRequiredError("An ordinals provider is required to resolve DIDs")
        return BtcoDidResolver(provider, ResolutionCache(ttl=self.resolution_cache_ttl))

    def document_loader(self, resolver: Optional[BtcoDidResolver] = None) -> StaticDocumentLoader:
        return StaticDocumentLoader(resolver=resolver, timeout=self.document_loader_timeout)

    def bitcoin_manager(self, provider: Optional[OrdinalsProvider] = None) -> BitcoinManager:
        """BitcoinManager on the configured network; fee_rate becomes a fixed fee oracle."""
        oracle = StaticFeeOracle(self.fee_rate) if self.fee_rate is not None else None
        return BitcoinManager(provider or self.ordinals_provider(), self.network, fee_oracle=oracle)
