from __future__ import annotations

# npm operations
NPM_INSTALL_TIMEOUT_SECONDS = 15 * 60.0
NPM_SCRIPT_TIMEOUT_SECONDS = 30 * 60.0

# Lockfile refresh across the whole workspace
LOCKFILE_TIMEOUT_SECONDS = 30 * 60.0

# Publish one-time-password re-prompts before giving up
PUBLISH_OTP_ATTEMPTS = 5
