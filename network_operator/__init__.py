"""Network operator: keeps cluster networking converged with the declared configuration."""

__version__ = "0.1.0"
