"""External command execution (platform CLI)."""

from sfmigrator.commands.runner import (
    CommandRunner,
    SubprocessCommandRunner,
    parse_command_output,
    with_json_flag,
)

__all__ = ["CommandRunner", "SubprocessCommandRunner", "parse_command_output", "with_json_flag"]
