"""
Contract call decoding against a registry of known method signatures.

Selectors are derived from textual signatures (keccak via eth-utils) and
arguments decoded with eth-abi. Unknown selectors are not errors: the
pipeline keeps the raw call data instead.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError
from eth_utils import function_signature_to_4byte_selector

from backend_riskengine.analysis_engine.models import DecodedInteraction
from backend_riskengine.chains.models import ContractCall
from backend_riskengine.riskengine_logging import get_logger

logger = get_logger(__name__)

CATEGORY_SWAP = "swap"
CATEGORY_TRANSFER = "transfer"
CATEGORY_APPROVAL = "approval"
CATEGORY_LIQUIDITY = "liquidity"
CATEGORY_WRAP = "wrap"
CATEGORY_BRIDGE = "bridge"
CATEGORY_MIXER = "mixer"

# (signature, argument names, category)
DEFAULT_SIGNATURES: tuple[tuple[str, tuple[str, ...], str], ...] = (
    ("transfer(address,uint256)", ("to", "amount"), CATEGORY_TRANSFER),
    ("transferFrom(address,address,uint256)", ("from", "to", "amount"), CATEGORY_TRANSFER),
    ("approve(address,uint256)", ("spender", "amount"), CATEGORY_APPROVAL),
    ("deposit()", (), CATEGORY_WRAP),
    ("withdraw(uint256)", ("amount",), CATEGORY_WRAP),
    (
        "swapExactETHForTokens(uint256,address[],address,uint256)",
        ("amountOutMin", "path", "to", "deadline"),
        CATEGORY_SWAP,
    ),
    (
        "swapExactTokensForETH(uint256,uint256,address[],address,uint256)",
        ("amountIn", "amountOutMin", "path", "to", "deadline"),
        CATEGORY_SWAP,
    ),
    (
        "swapExactTokensForTokens(uint256,uint256,address[],address,uint256)",
        ("amountIn", "amountOutMin", "path", "to", "deadline"),
        CATEGORY_SWAP,
    ),
    (
        "swapTokensForExactTokens(uint256,uint256,address[],address,uint256)",
        ("amountOut", "amountInMax", "path", "to", "deadline"),
        CATEGORY_SWAP,
    ),
    (
        "addLiquidityETH(address,uint256,uint256,uint256,address,uint256)",
        ("token", "amountTokenDesired", "amountTokenMin", "amountETHMin", "to", "deadline"),
        CATEGORY_LIQUIDITY,
    ),
    (
        "removeLiquidityETH(address,uint256,uint256,uint256,address,uint256)",
        ("token", "liquidity", "amountTokenMin", "amountETHMin", "to", "deadline"),
        CATEGORY_LIQUIDITY,
    ),
    # Tornado Cash style pools
    ("deposit(bytes32)", ("commitment",), CATEGORY_MIXER),
    (
        "withdraw(bytes,bytes32,bytes32,address,address,uint256,uint256)",
        ("proof", "root", "nullifierHash", "recipient", "relayer", "fee", "refund"),
        CATEGORY_MIXER,
    ),
    # Canonical bridge deposits
    ("depositETH(uint32,bytes)", ("minGasLimit", "extraData"), CATEGORY_BRIDGE),
    (
        "depositFor(address,address,bytes)",
        ("user", "rootToken", "depositData"),
        CATEGORY_BRIDGE,
    ),
)


@dataclass(frozen=True)
class MethodSignature:
    signature: str
    selector: str
    name: str
    arg_types: tuple[str, ...]
    arg_names: tuple[str, ...]
    category: str


def _split_signature(signature: str) -> tuple[str, tuple[str, ...]]:
    name, _, rest = signature.partition("(")
    args = rest.rstrip(")")
    return name, tuple(a for a in args.split(",") if a)


def _normalize_value(value: Any) -> Any:
    if isinstance(value, bytes):
        return "0x" + value.hex()
    if isinstance(value, (list, tuple)):
        return tuple(_normalize_value(v) for v in value)
    return value


class SignatureRegistry:
    """selector -> MethodSignature. Preloaded with common ERC-20, router, mixer and bridge methods."""

    def __init__(self, signatures: tuple[tuple[str, tuple[str, ...], str], ...] = DEFAULT_SIGNATURES) -> None:
        self._by_selector: dict[str, MethodSignature] = {}
        for signature, arg_names, category in signatures:
            self.register(signature, arg_names, category)

    def register(self, signature: str, arg_names: tuple[str, ...] = (), category: str = "other") -> MethodSignature:
        name, arg_types = _split_signature(signature)
        if arg_names and len(arg_names) != len(arg_types):
            raise ValueError(f"arg_names length does not match {signature}")
        selector = "0x" + function_signature_to_4byte_selector(signature).hex()
        method = MethodSignature(
            signature=signature,
            selector=selector,
            name=name,
            arg_types=arg_types,
            arg_names=arg_names or tuple(f"arg{i}" for i in range(len(arg_types))),
            category=category,
        )
        self._by_selector[selector] = method
        return method

    def lookup(self, selector: str | None) -> MethodSignature | None:
        if not selector:
            return None
        return self._by_selector.get(selector.lower())

    def category_of(self, selector: str | None) -> str | None:
        method = self.lookup(selector)
        return method.category if method else None

    def __len__(self) -> int:
        return len(self._by_selector)

    def decode(self, call: ContractCall | None) -> DecodedInteraction | None:
        """
        Decode a contract call. Returns None for unknown selectors or argument
        data that does not match the registered signature.
        """
        if call is None:
            return None
        method = self.lookup(call.selector)
        if method is None:
            return None
        payload = bytes.fromhex(call.call_data[10:])
        try:
            values = abi_decode(list(method.arg_types), payload) if method.arg_types else ()
        except (DecodingError, ValueError, OverflowError) as e:
            logger.debug(
                "call_decode_failed",
                selector=method.selector,
                signature=method.signature,
                error=str(e),
            )
            return None
        arguments = tuple(
            (arg_name, _normalize_value(value))
            for arg_name, value in zip(method.arg_names, values)
        )
        return DecodedInteraction(
            contract=call.contract,
            selector=method.selector,
            method_name=method.name,
            signature=method.signature,
            category=method.category,
            arguments=arguments,
        )
