"""Runtime paths for one Diarist instance.

Config and logs are anchored to the working directory. The meeting store
follows ``data_dir``, which config.json may point somewhere else.
"""

from __future__ import annotations

import os


class AppContext:
    def __init__(self, *, cwd: str, data_dir: str | None = None) -> None:
        self._cwd = cwd
        self._app_dir = os.path.dirname(__file__)
        self.data_dir = data_dir or self.default_data_dir

    @property
    def default_data_dir(self) -> str:
        return os.path.join(self._cwd, "data")

    @property
    def config_path(self) -> str:
        # Always beside the default data dir, so a custom data_dir can be configured.
        return os.path.join(self.default_data_dir, "config.json")

    @property
    def store_dir(self) -> str:
        """Directory backing the key-value store for saved meetings."""
        return os.path.join(self.data_dir, "store")

    @property
    def logs_dir(self) -> str:
        return os.path.join(self._cwd, "logs")

    @property
    def static_dir(self) -> str:
        return os.path.join(self._app_dir, "static")

    def ensure_dirs(self) -> None:
        for d in (self.default_data_dir, self.data_dir, self.store_dir, self.logs_dir):
            os.makedirs(d, exist_ok=True)
