"""agtrace — supply-chain traceability ledger, order lifecycle and KYC core."""

__version__ = "0.1.0"
