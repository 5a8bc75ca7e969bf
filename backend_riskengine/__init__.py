"""
Backend Risk Engine: cross-chain transaction risk and address reputation.

Normalizes raw Bitcoin and EVM payloads into a chain-agnostic model, runs the
transaction intelligence pipeline, scores risk, keeps an evidence-backed
reputation per address, and correlates addresses across chains. Modular
architecture: chain adapters, single-flight cache, analysis engine, sources,
database, and a thin API server.
"""

__version__ = "0.1.0"
