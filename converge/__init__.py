"""converge — declarative dependency convergence for system configuration."""

__version__ = "0.1.0"
