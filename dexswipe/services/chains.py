"""Chain registry: which chains the security provider covers and how addresses compare."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Mapping

from config.settings import ChainMappingSettings


class AddressCasing(str, Enum):
    CASE_SENSITIVE = "case_sensitive"
    LOWERCASE = "lowercase"


@dataclass(frozen=True, slots=True)
class ChainFamily:
    """Address semantics and response shape shared by a group of chains."""

    name: str
    casing: AddressCasing


EVM = ChainFamily("evm", AddressCasing.LOWERCASE)
SOLANA = ChainFamily("solana", AddressCasing.CASE_SENSITIVE)
FAMILIES: dict[str, ChainFamily] = {EVM.name: EVM, SOLANA.name: SOLANA}


@dataclass(frozen=True, slots=True)
class ChainMapping:
    chain_id: str
    family: ChainFamily
    provider_chain_id: str | None

    @property
    def security_supported(self) -> bool:
        return self.family is SOLANA or bool(self.provider_chain_id)

    @property
    def rugpull_supported(self) -> bool:
        return self.family is EVM and bool(self.provider_chain_id)


class ChainRegistry:
    """Lookup table built from the `chains` settings section."""

    def __init__(self, mappings: Mapping[str, ChainMappingSettings]) -> None:
        self._chains = {
            chain_id: ChainMapping(
                chain_id=chain_id,
                family=FAMILIES[cfg.family],
                provider_chain_id=cfg.provider_chain_id,
            )
            for chain_id, cfg in mappings.items()
        }

    def get(self, chain_id: str) -> ChainMapping | None:
        return self._chains.get(chain_id)

    def is_security_supported(self, chain_id: str) -> bool:
        mapping = self._chains.get(chain_id)
        return bool(mapping and mapping.security_supported)

    def casing(self, chain_id: str) -> AddressCasing:
        # Unknown chains keep the address untouched.
        mapping = self._chains.get(chain_id)
        return mapping.family.casing if mapping else AddressCasing.CASE_SENSITIVE

    def normalize_address(self, chain_id: str, address: str) -> str:
        address = address.strip()
        if self.casing(chain_id) is AddressCasing.LOWERCASE:
            return address.lower()
        return address

    def token_key(self, chain_id: str, address: str) -> tuple[str, str]:
        """Cache / queue key for a token."""

        return chain_id, self.normalize_address(chain_id, address)

    @property
    def chain_ids(self) -> list[str]:
        return sorted(self._chains)


def token_id(chain_id: str, address: str) -> str:
    return f"{chain_id}:{address}"


def parse_token_id(value: str) -> tuple[str, str] | None:
    chain_id, sep, address = value.partition(":")
    chain_id, address = chain_id.strip(), address.strip()
    if not sep or not chain_id or not address:
        return None
    return chain_id, address


__all__ = [
    "AddressCasing",
    "ChainFamily",
    "ChainMapping",
    "ChainRegistry",
    "EVM",
    "FAMILIES",
    "SOLANA",
    "parse_token_id",
    "token_id",
]
