"""
Shellvisor CLI - command-line front end for the bash/process tools.

Provides subcommands for:
- shellvisor shell   - Interactive prompt (default)
- shellvisor run     - Run one command and follow it to completion
- shellvisor config  - Show or change configuration
"""

__version__ = "0.1.0"
