"""Configuration package.

Note: settings are never constructed at import time. Build a
``RepositorySettings`` directly or call ``docrepo.config.settings.load_settings``
where needed.
"""

__all__: list[str] = []
