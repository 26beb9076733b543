from __future__ import annotations

import os
from pathlib import Path

from platformdirs import (
    user_cache_dir as _ucache,
    user_config_dir as _uc,
    user_data_dir as _ud,
)

APP_NAME = "pytweak"


def _app_name(default: str) -> str:
    return os.getenv("PYTWEAK_APP_NAME", default)


def user_config_dir(app_name: str = APP_NAME) -> Path:
    app = _app_name(app_name)
    return Path(_uc(appname=app, appauthor=False)).resolve()


def user_data_dir(app_name: str = APP_NAME) -> Path:
    app = _app_name(app_name)
    return Path(_ud(appname=app, appauthor=False)).resolve()


def user_cache_dir(app_name: str = APP_NAME) -> Path:
    app = _app_name(app_name)
    return Path(_ucache(appname=app, appauthor=False)).resolve()


def config_file(app_name: str = APP_NAME) -> Path:
    return user_config_dir(app_name) / "config.ini"


def default_store_file(app_name: str = APP_NAME) -> Path:
    """Location of the YAML store snapshot used by the ``yaml`` backend."""
    return user_data_dir(app_name) / "store.yaml"


def profiles_dir(app_name: str = APP_NAME) -> Path:
    return user_data_dir(app_name) / "profiles"
