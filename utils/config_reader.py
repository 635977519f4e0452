import sys
from logging import Logger
from pathlib import Path

import yaml

"""
Config
Loads the export configuration (environments and table definitions) from a
YAML file and checks that both top-level sections are present before any
export is attempted.
"""

REQUIRED_SECTIONS = ("envs", "tables")


class ConfigReader:
    def __init__(self, log: Logger, configs_path: Path) -> None:
        """Initializes the Config object with a configurations file path and a logger.

        :param configs_path: Path to the configurations file.
        :param log: Logger instance for logging messages.
        """
        self.configs_path = Path(configs_path)
        self.configs_data = None
        self.log = log

    def load_configurations(self) -> "ConfigReader":
        """Loads configurations from the specified file into the configs_data attribute.

        :return: Self for fluent interface.
        :raises SystemExit: If the file cannot be loaded, does not exist or
            is missing a required section.
        """
        try:
            self._check_path_exists()
            try:
                with open(self.configs_path, "rb") as configs_file:
                    self.configs_data = yaml.safe_load(configs_file) or {}
            except Exception as e:
                self.log.error(
                    "Issue loading file '%s': %s" % (self.configs_path, e)
                )
                sys.exit(1)
        except FileNotFoundError as e:
            self.log.error("Issue loading file: %s" % (e))
            sys.exit(1)

        missing = [
            s for s in REQUIRED_SECTIONS if not self.configs_data.get(s)
        ]
        if missing:
            self.log.error(
                "Config '%s' is missing section(s): %s"
                % (self.configs_path, ", ".join(missing))
            )
            sys.exit(1)
        return self

    def _check_path_exists(self) -> None:
        """Checks if the Config file exists at the specified path.

        :raises FileNotFoundError: If the configurations file does not exist.
        """
        if not self.configs_path.is_file():
            raise FileNotFoundError(
                "The file '%s' does not exist." % (self.configs_path)
            )
