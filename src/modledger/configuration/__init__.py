"""
Configuration management for Modledger.

- **app_configuration.py**: YAML configuration loader for global settings:
  the staff role ladder, mod-log and rules channels, warn mute length,
  acknowledgement expiry, database location and the health endpoint.
  Falls back to defaults on a missing or malformed file.
"""
