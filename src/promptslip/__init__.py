"""PromptPay slip QR extraction and top-up reconciliation."""

__version__ = "0.1.0"
