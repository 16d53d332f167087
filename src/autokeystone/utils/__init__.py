"""
AutoKeystone - Utils Package

Exceptions and internationalization helpers.
"""

from autokeystone.utils.i18n import _

__all__ = ["_"]
