"""RemixHub API: repository remixes paid for with PIX-purchased credits."""

__version__ = "1.0.0"
