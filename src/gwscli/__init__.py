"""
A multi-account command line client for Gmail and Google Calendar built on
the Google Workspace Python client.

Several Google identities can be signed in side by side, each under a short
alias.  Account metadata lives in a YAML registry, OAuth tokens in the OS
keyring (or an encrypted file store when there is no keyring) and access
tokens are refreshed on demand right before a command talks to Google.

Python dataclasses are used for the API resource structs and most of the
wrapper logic is translating between those and the raw dicts.
"""

__version__ = "0.1.0"
