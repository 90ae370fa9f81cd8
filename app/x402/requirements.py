# app/x402/requirements.py
"""
Payment requirements and the static per-network token table.

A PaymentRequirement is built once at startup from settings and attached to a
protected route. Everything that can be checked about it is checked here so a
misconfigured network fails the process at boot instead of failing requests.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional

from app.x402.errors import ConfigurationError

logger = logging.getLogger(__name__)


class Network(str, Enum):
    """Chains/environments the gateway can verify payments on."""
    BASE_SEPOLIA = "base-sepolia"
    BASE = "base"


@dataclass(frozen=True)
class NetworkConfig:
    """Static facts about a network."""
    label: str
    alchemy_host: str
    token_contract: str
    token_symbol: str
    token_decimals: int
    is_testnet: bool


# USDC contract addresses by network
NETWORKS: Dict[Network, NetworkConfig] = {
    Network.BASE_SEPOLIA: NetworkConfig(
        label="Base Sepolia",
        alchemy_host="https://base-sepolia.g.alchemy.com/v2/",
        token_contract="0x036CbD53842c5426634e7929541eC2318f3dCF7e",
        token_symbol="USDC",
        token_decimals=6,
        is_testnet=True,
    ),
    Network.BASE: NetworkConfig(
        label="Base",
        alchemy_host="https://base-mainnet.g.alchemy.com/v2/",
        token_contract="0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
        token_symbol="USDC",
        token_decimals=6,
        is_testnet=False,
    ),
}


def addresses_equal(a: Optional[str], b: Optional[str]) -> bool:
    """EVM addresses compare case-insensitively (checksum casing is cosmetic)."""
    if not a or not b:
        return False
    return a.strip().lower() == b.strip().lower()


def parse_network(value) -> Network:
    """Resolve a network name, raising ConfigurationError for unknown values."""
    if isinstance(value, Network):
        return value
    try:
        return Network(str(value).strip().lower())
    except ValueError:
        supported = ", ".join(n.value for n in Network)
        raise ConfigurationError(f"Unknown network '{value}'. Supported: {supported}")


def get_network_config(network: Network) -> NetworkConfig:
    config = NETWORKS.get(network)
    if config is None:
        raise ConfigurationError(f"No token contract configured for network '{network.value}'")
    return config


def resolve_token_contract(network: Network, override: Optional[str] = None) -> str:
    """
    Return the accepted token contract for a network.

    An override is only accepted when it names the active network's own
    contract; pointing a network at another network's contract is a
    configuration error.
    """
    configured = get_network_config(network).token_contract
    if not override:
        return configured

    for other, other_config in NETWORKS.items():
        if other != network and addresses_equal(override, other_config.token_contract):
            raise ConfigurationError(
                f"Token contract {override} belongs to network '{other.value}', "
                f"not the active network '{network.value}'"
            )

    if not addresses_equal(override, configured):
        raise ConfigurationError(
            f"Token contract {override} does not match the contract configured "
            f"for '{network.value}' ({configured})"
        )
    return configured


@dataclass(frozen=True)
class PaymentRequirement:
    """What a client must pay to access a route. Immutable."""
    recipient_address: str
    minimum_amount: Decimal
    tolerance: Decimal
    network: Network
    token_contract: str
    token_symbol: str = "USDC"
    token_decimals: int = 6

    @property
    def minimum_accepted(self) -> Decimal:
        """Lowest transferred amount that satisfies this requirement."""
        return self.minimum_amount - self.tolerance

    @property
    def cache_scope(self) -> str:
        """Where a verified payment counts: network, token and recipient."""
        return f"{self.network.value}:{self.token_contract.lower()}:{self.recipient_address.lower()}"

    @property
    def network_label(self) -> str:
        return NETWORKS[self.network].label

    def to_dict(self) -> dict:
        return {
            "amount": str(self.minimum_amount),
            "currency": self.token_symbol,
            "network": self.network.value,
            "recipientAddress": self.recipient_address,
            "tokenContract": self.token_contract,
        }


def build_payment_requirement(
    network,
    recipient_address: Optional[str],
    minimum_amount: Decimal,
    tolerance: Decimal,
    token_contract_override: Optional[str] = None,
) -> PaymentRequirement:
    """
    Validate configuration values and build a PaymentRequirement.

    Raises:
        ConfigurationError: if any value is unusable
    """
    active = parse_network(network)
    network_config = get_network_config(active)
    token_contract = resolve_token_contract(active, token_contract_override)

    if not recipient_address or not recipient_address.strip():
        raise ConfigurationError("X402_PAY_TO_ADDRESS is not configured")

    minimum_amount = Decimal(minimum_amount)
    tolerance = Decimal(tolerance)
    if minimum_amount <= 0:
        raise ConfigurationError(f"Payment amount must be positive, got {minimum_amount}")
    if tolerance < 0 or tolerance >= minimum_amount:
        raise ConfigurationError(
            f"Amount tolerance {tolerance} must be non-negative and smaller than the price {minimum_amount}"
        )

    requirement = PaymentRequirement(
        recipient_address=recipient_address.strip(),
        minimum_amount=minimum_amount,
        tolerance=tolerance,
        network=active,
        token_contract=token_contract,
        token_symbol=network_config.token_symbol,
        token_decimals=network_config.token_decimals,
    )

    if not network_config.is_testnet:
        logger.info(f"x402: Payments verified on production network {network_config.label}")

    return requirement


def requirement_from_settings(settings) -> PaymentRequirement:
    """Build the gateway's requirement from the application settings."""
    return build_payment_requirement(
        network=settings.X402_NETWORK,
        recipient_address=settings.X402_PAY_TO_ADDRESS,
        minimum_amount=settings.X402_PRICE,
        tolerance=settings.X402_AMOUNT_TOLERANCE,
        token_contract_override=settings.X402_TOKEN_CONTRACT,
    )
