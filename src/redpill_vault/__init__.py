"""
redpill-vault - credential injection for AI coding agents.

Run shell commands that need secrets without the agent ever seeing them.

Features:
- rv-hook: PreToolUse hook that blocks, passes through or rewrites commands
- rv-exec: Run commands with secrets injected and masked in their output
- rv: Manage the encrypted vault, project manifests and approvals

Secrets live in a local AES-GCM encrypted SQLite vault.
"""

__version__ = "0.5.0"
