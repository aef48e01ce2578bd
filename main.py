"""Application entrypoint for Key Custody.

Launches the PyQt5 GUI for registering employees and keys and recording
key issue/return events.
"""

from keycustody.config import ConfigManager, configure_logging
from keycustody.ui.main_window import launch_app


if __name__ == '__main__':
    configure_logging(ConfigManager().load())
    launch_app()
