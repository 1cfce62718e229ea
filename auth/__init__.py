"""
auth — caller authentication for the GitHub App endpoints.

Provides:
  • signed user token creation & verification
  • ``get_current_user_id`` / ``require_write_access`` FastAPI dependencies
"""
