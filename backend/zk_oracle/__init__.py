"""ZK-ORACLE — zero-knowledge answer verification with on-chain anchoring."""

__version__ = "1.0.0"
