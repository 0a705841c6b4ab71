"""
wp_sync
=======

Synchronize WordPress databases between production, staging and development.
The target is backed up first, user tables are never copied and site URLs
are rewritten for the target environment. Works over SSH or locally.
"""

__version__ = "0.1.0"
__author__ = "Victor Gonzalez"
__email__ = "victor@ttamayo.com"

from .config_yaml import load_settings
from .environments import EnvironmentResolver
from .sync.orchestrator import SyncOrchestrator, sync_database
