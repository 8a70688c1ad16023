"""Version information."""

__version__ = "0.1.0"
__author__ = "rampload contributors"
__email__ = "rampload@example.com"
__license__ = "MIT"
