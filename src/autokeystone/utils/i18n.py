"""
AutoKeystone - Internationalization Module

This module initializes gettext for the user-visible messages reported by
the correction engine (e.g. "automatic cropping failed").
"""

import gettext
import os
import sys
from collections.abc import Callable

from autokeystone.config import APP_ID

TEXT_DOMAIN = APP_ID


def _dummy_translate(text: str) -> str:
    """Fallback translation function that returns the original text.

    Args:
        text: The text to translate.

    Returns:
        The original text unchanged.
    """
    return text


# Initialize _ with the fallback function
_: Callable[[str], str] = _dummy_translate

# Configure gettext. The host application owns the process locale, so we only
# look up a catalog for whatever locale is already active.
try:
    locale_dirs = [
        "/usr/share/locale",
        os.path.join(sys.prefix, "share", "locale"),
        os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "locale"),
    ]

    for locale_dir in locale_dirs:
        if os.path.exists(locale_dir):
            translation = gettext.translation(TEXT_DOMAIN, locale_dir, fallback=True)
            # fallback=True hands back a bare NullTranslations when no catalog exists
            if type(translation) is not gettext.NullTranslations:
                _ = translation.gettext
                break

except OSError:
    # Keep using the dummy function if the catalogs can't be read
    pass
