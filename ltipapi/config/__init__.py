"""LTIPAPI CONFIG MODULE"""

import collections.abc
import os

from ltipapi.config import base, prod, staging, test


# Below is from https://stackoverflow.com/a/3233356. Needed to handle nested keys
# such as "LOCKOUT" and "RATE_LIMITING"
def _nested_dict_update(d, u):
    for k, v in u.items():
        if isinstance(v, collections.abc.Mapping):
            d[k] = _nested_dict_update(d.get(k, {}), v)
        else:
            d[k] = v
    return d


SETTINGS = base.SETTINGS

if os.getenv("ENVIRONMENT") == "staging":
    _nested_dict_update(SETTINGS, staging.SETTINGS)

if os.getenv("ENVIRONMENT") == "prod":
    _nested_dict_update(SETTINGS, prod.SETTINGS)

if os.getenv("ENVIRONMENT") in ("test", "testing"):
    _nested_dict_update(SETTINGS, test.SETTINGS)


def get_setting(key, default=None):
    """Read a setting from the Flask app config, falling back to SETTINGS.

    Tests override values through ``app.config`` so the app config wins
    whenever an application context is active.
    """
    from flask import current_app

    try:
        return current_app.config.get(key, SETTINGS.get(key, default))
    except RuntimeError:
        return SETTINGS.get(key, default)
