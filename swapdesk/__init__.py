"""swapdesk: trade execution core with cache-consistent account state."""

__version__ = "0.1.0"
