"""
Chain - On-chain interaction layer for the Parity SDK.

Provides the JSON-RPC session, ABI schemas, transaction lifecycle, and the
generic contract binding used by the token and staking facades.

Uses httpx + eth-account + eth-abi instead of the heavyweight web3.py.
"""
