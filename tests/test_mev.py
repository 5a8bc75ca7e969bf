"""
Tests for MEV heuristics: sandwich and front-running within one block.
"""

from __future__ import annotations

from eth_abi import encode
from eth_utils import function_signature_to_4byte_selector

from backend_riskengine.analysis_engine import MevConfig, MevDetector, MevKind, SignatureRegistry
from backend_riskengine.chains import normalize
from conftest import NOW, eth_address, eth_raw

ROUTER = eth_address(50)
WETH = eth_address(900)
TOKEN = eth_address(901)
OTHER_TOKEN = eth_address(902)
RECIPIENT = eth_address(99)
GWEI = 10**9

BUY_SELECTOR = "0x7ff36ab5"
SELL_SELECTOR = "0x" + function_signature_to_4byte_selector(
    "swapExactTokensForETH(uint256,uint256,address[],address,uint256)"
).hex()


def _buy(path, amount_out_min=1):
    payload = encode(["uint256", "address[]", "address", "uint256"], [amount_out_min, path, RECIPIENT, NOW])
    return BUY_SELECTOR + payload.hex()


def _sell(path, amount_in=5 * 10**18, amount_out_min=1):
    payload = encode(
        ["uint256", "uint256", "address[]", "address", "uint256"],
        [amount_in, amount_out_min, path, RECIPIENT, NOW],
    )
    return SELL_SELECTOR + payload.hex()


BUY_TOKEN = _buy([WETH, TOKEN])
SELL_TOKEN = _sell([TOKEN, WETH])


def _tx(n: int, sender: int, position: int, *, gas_price: int = 20 * GWEI, data: str = BUY_TOKEN, value: int = 10**18):
    raw = eth_raw(n, eth_address(sender), ROUTER, value, data=data, position=position, gas_price=gas_price)
    return normalize(raw, "ethereum")


def _detector(**overrides):
    return MevDetector(SignatureRegistry(), MevConfig(**overrides))


def test_swap_leg_decodes_direction_and_amounts():
    detector = _detector()
    buy = detector.swap_leg(_tx(1, sender=10, position=1, value=3 * 10**18))
    assert buy.pair == (WETH.lower(), TOKEN.lower())
    assert buy.amount_in == 3 * 10**18
    assert buy.amount_out_min == 1

    sell = detector.swap_leg(_tx(2, sender=10, position=2, data=SELL_TOKEN, value=0))
    assert sell.pair == (TOKEN.lower(), WETH.lower())
    assert sell.amount_in == 5 * 10**18

    assert detector.swap_leg(_tx(3, sender=10, position=3, data=BUY_SELECTOR + "00" * 32)) is None


def test_sandwich_flags_victim_and_attacker_legs():
    front = _tx(1, sender=10, position=1)
    victim = _tx(2, sender=11, position=2)
    back = _tx(3, sender=10, position=3, data=SELL_TOKEN, value=0)
    block = [back, victim, front]
    detector = _detector()

    victim_flags = detector.detect(victim, block)
    assert [f.kind for f in victim_flags] == [MevKind.SANDWICH]
    flag = victim_flags[0]
    assert flag.detected is True
    assert flag.attacker == eth_address(10)
    assert flag.evidence["role"] == "victim"
    assert flag.evidence["positions"] == [1, 2, 3]
    assert flag.evidence["legs"]["back"]["token_in"] == TOKEN.lower()

    back_flags = detector.detect(back, block)
    assert back_flags[0].evidence["role"] == "attacker"


def test_bracketing_without_opposite_price_moves_is_not_a_sandwich():
    victim = _tx(2, sender=11, position=2)
    # same sender buys before and after: no reverse trade to capture the victim's impact
    front = _tx(1, sender=10, position=1)
    back_buy = _tx(3, sender=10, position=3)
    assert _detector().detect(victim, [front, victim, back_buy]) == ()

    # front leg sells while the victim buys
    front_sell = _tx(4, sender=10, position=1, data=SELL_TOKEN, value=0)
    back_sell = _tx(5, sender=10, position=3, data=SELL_TOKEN, value=0)
    assert _detector().detect(victim, [front_sell, victim, back_sell]) == ()

    # reverse trade on an unrelated pair
    other_pair = _tx(6, sender=10, position=3, data=_sell([OTHER_TOKEN, WETH]), value=0)
    assert _detector().detect(victim, [front, victim, other_pair]) == ()

    # zero-size front leg moves no price
    empty_front = _tx(7, sender=10, position=1, value=0)
    back = _tx(8, sender=10, position=3, data=SELL_TOKEN, value=0)
    assert _detector().detect(victim, [empty_front, victim, back]) == ()


def test_sandwich_requires_swap_victim():
    transfer_data = "0xa9059cbb" + "00" * 64
    front = _tx(1, sender=10, position=1, data=transfer_data)
    victim = _tx(2, sender=11, position=2, data=transfer_data)
    back = _tx(3, sender=10, position=3, data=transfer_data)
    assert _detector().detect(victim, [front, victim, back]) == ()
    relaxed = _detector(require_swap_victim=False).detect(victim, [front, victim, back])
    assert [f.kind for f in relaxed] == [MevKind.SANDWICH]


def test_front_running_with_gas_premium():
    front = _tx(5, sender=20, position=5, gas_price=100 * GWEI, value=2 * 10**18)
    victim = _tx(6, sender=21, position=6, gas_price=20 * GWEI)
    flags = _detector().detect(victim, [front, victim])
    assert [f.kind for f in flags] == [MevKind.FRONT_RUNNING]
    evidence = flags[0].evidence
    assert flags[0].attacker == eth_address(20)
    assert evidence["role"] == "victim"
    assert evidence["gas_premium"] == 80 * GWEI
    assert evidence["position_gap"] == 1
    assert evidence["value_delta"] == 10**18


def test_front_running_requires_same_swap_direction():
    front = _tx(5, sender=20, position=5, gas_price=100 * GWEI, data=_buy([WETH, OTHER_TOKEN]))
    victim = _tx(6, sender=21, position=6, gas_price=20 * GWEI)
    assert _detector().detect(victim, [front, victim]) == ()


def test_front_running_ignored_outside_window_or_without_premium():
    far = _tx(7, sender=20, position=1, gas_price=100 * GWEI)
    victim = _tx(8, sender=21, position=9, gas_price=20 * GWEI)
    assert _detector().detect(victim, [far, victim]) == ()

    same_gas = _tx(9, sender=20, position=8, gas_price=20 * GWEI)
    assert _detector().detect(victim, [same_gas, victim]) == ()


def test_pending_and_plain_transfers_are_not_checked():
    pending = normalize(
        eth_raw(10, eth_address(1), ROUTER, data=BUY_TOKEN, block_number=None), "ethereum"
    )
    plain = normalize(eth_raw(11, eth_address(1), eth_address(2), 1), "ethereum")
    assert _detector().detect(pending, []) == ()
    assert _detector().detect(plain, []) == ()
