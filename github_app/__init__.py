"""
github_app — link internal users to GitHub App installations.

Provides:
  • ``<namespace>_<random>`` OAuth state tokens kept in the browser session
  • the installation callback state machine (code → tokens → verify → store)
  • installation ownership verification against GitHub
  • per-user credential storage with Fernet encryption at rest
  • repository listing with one-shot token refresh
"""
