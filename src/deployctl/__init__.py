"""DeployCtl - parallel microservice deployment for a single docker host."""

__version__ = "0.3.0"
__all__ = ["__version__"]
