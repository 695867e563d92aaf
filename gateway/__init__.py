"""Research gateway: quota-gated proxy over public research and market data APIs."""

__version__ = "2.1"
