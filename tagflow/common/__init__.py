"""Shared configuration, command execution, and models used by every pipeline step."""
