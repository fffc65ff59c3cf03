"""vaultseek: hybrid note retrieval for Markdown vaults."""

__version__ = "0.1.0"
