"""Snap Sync: event-driven upload of surveillance snapshots and clips.

Listens to a Frigate MQTT broker for snapshot and recording events and
delivers each new artifact to every configured destination (local
folders and SFTP servers), retrying each destination independently.
"""

__version__ = "1.0.0"
__app_name__ = "Snap Sync"
